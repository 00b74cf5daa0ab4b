"""
持久化网关

所有保存操作都是尽力而为：失败只记录日志并返回 False，不会影响区块处理
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.dialects.postgresql import insert

from evm_chain_monitor.core.exceptions import PersistenceError
from evm_chain_monitor.models.chain_models import BlockRecord, SwapRecord, TransactionRecord, TransferRecord
from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == '':
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise PersistenceError(f"数值格式错误: {value!r}")


def block_row(summary: Dict[str, Any]) -> Dict[str, Any]:
    columns = BlockRecord.__table__.columns.keys()
    return {key: value for key, value in summary.items() if key in columns}


def transaction_row(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'chain': record['chain'],
        'hash': record['hash'],
        'block_number': record.get('block_number'),
        'tx_index': record.get('tx_index'),
        'from_address': record.get('from'),
        'to_address': record.get('to'),
        'value': _to_decimal(record.get('value')),
        'gas': record.get('gas'),
        'gas_price': _to_decimal(record.get('gas_price')),
        'gas_used': record.get('gas_used'),
        'nonce': record.get('nonce'),
        'method_id': record.get('method_id') or None,
        'status': record.get('status'),
    }


def transfer_row(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'chain': record['chain'],
        'tx_hash': record['tx_hash'],
        'block_number': record.get('block_number'),
        'tx_index': record.get('tx_index'),
        'log_index': record['log_index'],
        'from_address': record.get('from'),
        'to_address': record.get('to'),
        'value': _to_decimal(record.get('value')),
        'token': record.get('token'),
        'token_address': record.get('token_address'),
        'transfer_type': record.get('type'),
    }


def swap_row(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'chain': record['chain'],
        'tx_hash': record['tx_hash'],
        'block_number': record.get('block_number'),
        'tx_index': record.get('tx_index'),
        'log_index': record['log_index'],
        'sender': record.get('sender'),
        'to_address': record.get('to'),
        'pair_address': record.get('pair'),
        'in_token': record.get('in_token'),
        'out_token': record.get('out_token'),
        'in_amount': _to_decimal(record.get('in_amount')),
        'out_amount': _to_decimal(record.get('out_amount')),
        'router': record.get('router'),
        'method': record.get('method'),
        'detected_by': record.get('detected_by'),
    }


class DatabasePersistence:
    """PostgreSQL 持久化，重复记录忽略（ON CONFLICT DO NOTHING）"""

    def __init__(self, db_manager):
        self.db_manager = db_manager

    async def _insert(self, model, rows: List[Dict[str, Any]], label: str) -> bool:
        if not rows:
            return True
        try:
            async with self.db_manager.get_async_session() as session:
                await session.execute(insert(model).values(rows).on_conflict_do_nothing())
            return True
        except Exception as e:
            error = e if isinstance(e, PersistenceError) else PersistenceError(f"保存{label}失败: {e}")
            logger.error(str(error))
            return False

    async def save_block(self, summary: Dict[str, Any]) -> bool:
        saved = await self._insert(BlockRecord, [block_row(summary)], '区块数据')
        if saved:
            logger.debug(f"✅ 区块数据保存成功: {summary.get('chain')} #{summary.get('number')}")
        return saved

    async def save_transaction(self, record: Dict[str, Any]) -> bool:
        try:
            row = transaction_row(record)
        except PersistenceError as e:
            logger.error(f"保存交易数据失败 {record.get('hash')}: {e}")
            return False
        return await self._insert(TransactionRecord, [row], '交易数据')

    async def save_transfers_batch(self, records: List[Dict[str, Any]]) -> bool:
        try:
            rows = [transfer_row(record) for record in records]
        except PersistenceError as e:
            logger.error(f"批量保存转账记录失败: {e}")
            return False
        saved = await self._insert(TransferRecord, rows, '转账记录')
        if saved and rows:
            logger.debug(f"✅ 批量保存转账记录成功: {len(rows)} 条")
        return saved

    async def save_swaps_batch(self, records: List[Dict[str, Any]]) -> bool:
        try:
            rows = [swap_row(record) for record in records]
        except PersistenceError as e:
            logger.error(f"批量保存Swap记录失败: {e}")
            return False
        saved = await self._insert(SwapRecord, rows, 'Swap记录')
        if saved and rows:
            logger.debug(f"✅ 批量保存Swap记录成功: {len(rows)} 条")
        return saved

    async def close(self) -> None:
        await self.db_manager.close()


class LoggingPersistence:
    """只输出日志的持久化（数据库禁用时使用）"""

    async def save_block(self, summary: Dict[str, Any]) -> bool:
        logger.debug(f"📦 {summary.get('chain')} 区块 #{summary.get('number')}: "
                     f"交易={summary.get('tx_count')}, Swap={summary.get('swaps')}")
        return True

    async def save_transaction(self, record: Dict[str, Any]) -> bool:
        logger.debug(f"💸 {record.get('chain')} 交易 {record.get('hash')} 状态={record.get('status')}")
        return True

    async def save_transfers_batch(self, records: List[Dict[str, Any]]) -> bool:
        for record in records:
            logger.debug(f"🔁 {record.get('chain')} {record.get('type')} {record.get('token')} "
                         f"{record.get('from')} -> {record.get('to')}: {record.get('value')}")
        return True

    async def save_swaps_batch(self, records: List[Dict[str, Any]]) -> bool:
        for record in records:
            logger.debug(f"🔄 {record.get('chain')} {record.get('router')} {record.get('method')} "
                         f"{record.get('in_amount')} {record.get('in_token')} -> "
                         f"{record.get('out_amount')} {record.get('out_token')}")
        return True

    async def close(self) -> None:
        return None


class CompositePersistence:
    """把每条记录分发给多个持久化实现，单个实现失败不影响其他实现"""

    def __init__(self, sinks):
        self.sinks = list(sinks)

    async def _fan_out(self, method: str, payload) -> bool:
        ok = True
        for sink in self.sinks:
            try:
                result = await getattr(sink, method)(payload)
            except Exception as e:
                logger.error(f"{type(sink).__name__}.{method} 失败: {e}")
                result = False
            ok = ok and result is not False
        return ok

    async def save_block(self, summary: Dict[str, Any]) -> bool:
        return await self._fan_out('save_block', summary)

    async def save_transaction(self, record: Dict[str, Any]) -> bool:
        return await self._fan_out('save_transaction', record)

    async def save_transfers_batch(self, records: List[Dict[str, Any]]) -> bool:
        return await self._fan_out('save_transfers_batch', records)

    async def save_swaps_batch(self, records: List[Dict[str, Any]]) -> bool:
        return await self._fan_out('save_swaps_batch', records)

    async def close(self) -> None:
        for sink in self.sinks:
            close = getattr(sink, 'close', None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"关闭 {type(sink).__name__} 失败: {e}")
