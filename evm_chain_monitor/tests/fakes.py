"""
测试用模拟对象：RPC 网关、记录型持久化以及交易/日志构造函数
"""

import asyncio
from typing import Any, Dict, List, Optional

from evm_chain_monitor.config.monitor_config import MonitorConfig, MonitorSettings
from evm_chain_monitor.core.exceptions import RPCConnectionError
from evm_chain_monitor.models.data_types import Block, Transaction
from evm_chain_monitor.utils.signature_registry import ERC20_TRANSFER_TOPIC, UNISWAP_V2_SWAP_TOPIC

ALICE = '0x' + '11' * 20
BOB = '0x' + '22' * 20
TOKEN = '0x' + 'aa' * 20
PAIR = '0x' + 'bb' * 20
UNISWAP_V2_ROUTER = '0x7a250d5630b4cf539739df2c5dacb4c659f2488d'

# 所有时间类参数为 0，测试不需要等待
FAST_SETTINGS = MonitorSettings(
    batch_size=5,
    batch_pause=0.0,
    max_connection_errors=10,
    restart_delay=0.0,
    receipt_retry_attempts=3,
    receipt_retry_delay=0.0,
)


def address_topic(address: str) -> str:
    return '0x' + '0' * 24 + address[2:]


def uint_words(*values: int) -> str:
    return '0x' + ''.join(f"{value:064x}" for value in values)


def make_tx(index: int = 0, to: Optional[str] = BOB, value: int = 0, input_data: str = '0x',
            sender: str = ALICE, block_number: int = 1) -> Transaction:
    return Transaction(
        hash=f"0x{block_number:032x}{index:032x}",
        sender=sender,
        to=to,
        value=value,
        gas=21000,
        gas_price=10 ** 9,
        nonce=index,
        tx_index=index,
        input=input_data,
        block_number=block_number,
    )


def make_block(number: int, transactions=(), chain: str = 'TEST') -> Block:
    transactions = tuple(transactions)
    return Block(
        chain=chain,
        number=number,
        hash=f"0x{number:064x}",
        parent_hash=f"0x{number - 1:064x}",
        timestamp=1_700_000_000 + number,
        gas_used=21000 * len(transactions),
        gas_limit=30_000_000,
        size=1000,
        transactions=transactions,
        transaction_hashes=tuple(tx.hash for tx in transactions),
    )


def transfer_log(sender: str, to: str, value: int, token: str = TOKEN) -> Dict[str, Any]:
    return {
        'address': token,
        'topics': [ERC20_TRANSFER_TOPIC, address_topic(sender), address_topic(to)],
        'data': uint_words(value),
    }


def swap_log(amount0_in: int, amount1_in: int, amount0_out: int, amount1_out: int,
             sender: str = UNISWAP_V2_ROUTER, to: str = ALICE, pair: str = PAIR) -> Dict[str, Any]:
    return {
        'address': pair,
        'topics': [UNISWAP_V2_SWAP_TOPIC, address_topic(sender), address_topic(to)],
        'data': uint_words(amount0_in, amount1_in, amount0_out, amount1_out),
    }


def receipt(status: int = 1, logs=(), gas_used: int = 21000, block_number: int = 1) -> Dict[str, Any]:
    return {'status': status, 'gasUsed': gas_used, 'blockNumber': block_number, 'logs': list(logs)}


class FakeRPC:
    """模拟链 RPC 网关"""

    def __init__(self, rpc_url: str = 'http://fake-rpc', chain: str = 'TEST', latest: int = 100):
        self.rpc_url = rpc_url
        self.chain_name = chain
        self.latest = latest
        self.healthy = True
        self.blocks: Dict[int, Block] = {}
        self.receipts: Dict[str, Any] = {}
        self.fail_blocks = set()
        self.connect_error: Optional[BaseException] = None
        self.subscribe_error: Optional[BaseException] = None

        self.requested_blocks: List[int] = []
        self.receipt_calls: List[str] = []
        self.connects = 0
        self.disconnects = 0
        self.subscribes = 0
        self.unsubscribes = 0
        self.heads: asyncio.Queue = asyncio.Queue()

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connects += 1

    async def disconnect(self) -> None:
        self.disconnects += 1

    def is_healthy(self) -> bool:
        return self.healthy

    async def get_latest_height(self) -> int:
        if self.connect_error is not None:
            raise self.connect_error
        return self.latest

    async def get_block(self, block_number: int, full_transactions: bool = True) -> Block:
        self.requested_blocks.append(block_number)
        if block_number in self.fail_blocks:
            raise RPCConnectionError(f"block {block_number} unavailable")
        return self.blocks.get(block_number) or make_block(block_number, chain=self.chain_name)

    async def get_transaction_receipt(self, tx_hash: str):
        self.receipt_calls.append(tx_hash)
        result = self.receipts.get(tx_hash, receipt())
        if isinstance(result, BaseException):
            raise result
        return result

    async def subscribe_new_heads(self) -> str:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscribes += 1
        return '0xsub'

    async def iter_new_heads(self):
        while True:
            header = await self.heads.get()
            if header is None:
                return
            if isinstance(header, BaseException):
                raise header
            yield header

    async def unsubscribe(self) -> None:
        self.unsubscribes += 1


class RecordingPersistence:
    """记录所有保存调用"""

    def __init__(self):
        self.blocks: List[Dict[str, Any]] = []
        self.transactions: List[Dict[str, Any]] = []
        self.transfers: List[Dict[str, Any]] = []
        self.swaps: List[Dict[str, Any]] = []
        self.closed = False

    async def save_block(self, summary):
        self.blocks.append(summary)
        return True

    async def save_transaction(self, record):
        self.transactions.append(record)
        return True

    async def save_transfers_batch(self, records):
        self.transfers.extend(records)
        return True

    async def save_swaps_batch(self, records):
        self.swaps.extend(records)
        return True

    async def close(self):
        self.closed = True


def make_config(config_id: int = 1, chain: str = 'TEST', **overrides) -> MonitorConfig:
    data = {'id': config_id, 'chain': chain, 'chain_id': '1', 'symbol': 'ETH',
            'rpc_http': f'http://{chain.lower()}-rpc', 'interval': 1000}
    data.update(overrides)
    return MonitorConfig.from_dict(data)
