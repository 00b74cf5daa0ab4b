"""
持久化网关测试：记录转换、分发、RabbitMQ 发布
"""

import json
from contextlib import asynccontextmanager
from decimal import Decimal

from evm_chain_monitor.db.persistence import (
    CompositePersistence, DatabasePersistence, LoggingPersistence, block_row, swap_row,
    transaction_row, transfer_row,
)
from evm_chain_monitor.services.rabbitmq_publisher import RabbitMQPersistence
from evm_chain_monitor.tests.fakes import RecordingPersistence

TRANSFER = {
    'chain': 'ETH', 'tx_hash': '0xabc', 'block_number': 10, 'from': '0x1', 'to': '0x2',
    'value': str(10 ** 30), 'token': 'erc20', 'token_address': '0x3', 'type': 'mint',
    'tx_index': 4, 'log_index': 2,
}


class FakeSession:
    def __init__(self, error=None):
        self.statements = []
        self.error = error

    async def execute(self, statement):
        if self.error is not None:
            raise self.error
        self.statements.append(statement)


class FakeDatabaseManager:
    def __init__(self, error=None):
        self.session = FakeSession(error)
        self.closed = False

    @asynccontextmanager
    async def get_async_session(self):
        yield self.session

    async def close(self):
        self.closed = True


class FakeExchange:
    def __init__(self):
        self.messages = []

    async def publish(self, message, routing_key):
        self.messages.append((routing_key, json.loads(message.body.decode('utf-8'))))


class TestRowMapping:

    def test_block_row_keeps_table_columns(self):
        row = block_row({'chain': 'ETH', 'number': 1, 'hash': '0x1', 'unknown': 'dropped'})
        assert row == {'chain': 'ETH', 'number': 1, 'hash': '0x1'}

    def test_transaction_row(self):
        row = transaction_row({
            'chain': 'ETH', 'hash': '0xabc', 'from': '0x1', 'to': None, 'value': '5',
            'gas_price': '1000000000', 'method_id': '', 'status': 1,
        })

        assert row['from_address'] == '0x1'
        assert row['to_address'] is None
        assert row['value'] == Decimal(5)
        assert row['gas_price'] == Decimal(10 ** 9)
        assert row['method_id'] is None

    def test_transfer_row_keeps_uint256_precision(self):
        row = transfer_row(TRANSFER)

        assert row['value'] == Decimal(10 ** 30)
        assert row['transfer_type'] == 'mint'
        assert row['log_index'] == 2

    def test_swap_row(self):
        row = swap_row({
            'chain': 'BSC', 'tx_hash': '0xdef', 'log_index': 3, 'sender': '0x1', 'to': '0x2',
            'pair': '0x3', 'in_token': 'token0', 'out_token': 'token1',
            'in_amount': '100', 'out_amount': '90', 'router': 'PancakeSwap V2',
            'method': 'swapExactTokensForTokens', 'detected_by': 'methodId',
        })

        assert row['pair_address'] == '0x3'
        assert row['in_amount'] == Decimal(100)
        assert row['detected_by'] == 'methodId'


class TestDatabasePersistence:

    async def test_batch_is_one_statement(self):
        manager = FakeDatabaseManager()
        persistence = DatabasePersistence(manager)

        assert await persistence.save_transfers_batch([TRANSFER, {**TRANSFER, 'log_index': 3}]) is True
        assert len(manager.session.statements) == 1

    async def test_empty_batch_is_noop(self):
        manager = FakeDatabaseManager()

        assert await DatabasePersistence(manager).save_swaps_batch([]) is True
        assert manager.session.statements == []

    async def test_database_error_is_logged_not_raised(self):
        manager = FakeDatabaseManager(error=RuntimeError('connection refused'))

        assert await DatabasePersistence(manager).save_block({'chain': 'ETH', 'number': 1, 'hash': '0x1'}) is False

    async def test_bad_value_is_rejected(self):
        manager = FakeDatabaseManager()

        saved = await DatabasePersistence(manager).save_transfers_batch([{**TRANSFER, 'value': 'not-a-number'}])

        assert saved is False
        assert manager.session.statements == []


class TestCompositePersistence:

    async def test_fan_out_survives_failing_sink(self):
        class BrokenSink:
            async def save_transaction(self, record):
                raise RuntimeError('boom')

        recording = RecordingPersistence()
        composite = CompositePersistence([BrokenSink(), LoggingPersistence(), recording])

        result = await composite.save_transaction({'chain': 'ETH', 'hash': '0x1'})

        assert result is False
        assert recording.transactions == [{'chain': 'ETH', 'hash': '0x1'}]

    async def test_all_sinks_succeed(self):
        recording = RecordingPersistence()
        composite = CompositePersistence([LoggingPersistence(), recording])

        assert await composite.save_block({'chain': 'ETH', 'number': 1}) is True
        assert await composite.save_transfers_batch([TRANSFER]) is True
        assert await composite.save_swaps_batch([]) is True
        assert recording.transfers == [TRANSFER]

        await composite.close()
        assert recording.closed


class TestRabbitMQPersistence:

    async def test_not_connected_drops_message(self):
        publisher = RabbitMQPersistence()

        assert await publisher.save_block({'chain': 'ETH', 'number': 1}) is False
        assert publisher.published == 0

    async def test_routing_key_per_chain_and_kind(self):
        publisher = RabbitMQPersistence.from_config({'enabled': True, 'exchange_name': 'events'})
        publisher.exchange = FakeExchange()
        publisher._is_connected = True

        await publisher.save_transfers_batch([TRANSFER, {**TRANSFER, 'log_index': 3}])
        await publisher.save_block({'chain': 'BSC', 'number': 7})

        keys = [key for key, _ in publisher.exchange.messages]
        assert keys == ['eth.transfer', 'eth.transfer', 'bsc.block']
        assert publisher.exchange.messages[0][1] == {'kind': 'transfer', 'data': TRANSFER}
        assert publisher.published == 3
        assert publisher.exchange_name == 'events'
