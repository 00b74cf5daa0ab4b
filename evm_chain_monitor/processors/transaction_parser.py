"""
交易解析器

获取交易回执并解析日志事件，识别原生币转账、ERC20 转账（含 mint/burn）和 DEX Swap
只使用已知的方法签名和事件 topic 匹配，不依赖 ABI
"""

import asyncio
from typing import Any, Mapping, Optional

from evm_chain_monitor.config.monitor_config import MonitorSettings
from evm_chain_monitor.core.exceptions import DecodeError, RPCConnectionError, is_connection_error
from evm_chain_monitor.models.data_types import (
    DetectionSource, ParsedTransaction, Swap, SwapTag, TokenKind, Transaction,
    Transfer, TransferType,
)
from evm_chain_monitor.utils.hex_utils import (
    ZERO_ADDRESS, normalize_address, split_words, to_hex_str, to_int, topic_to_address,
)
from evm_chain_monitor.utils.log_utils import get_logger
from evm_chain_monitor.utils.signature_registry import (
    ERC20_TRANSFER_TOPIC, UNISWAP_V2_SWAP_TOPIC, is_swap_method, lookup_method, lookup_router,
)

logger = get_logger(__name__)


class TransactionParser:
    """交易解析器 - 无状态，可在多个监听器之间共享"""

    def __init__(self, settings: Optional[MonitorSettings] = None):
        self.settings = settings or MonitorSettings()

    async def parse(self, tx: Transaction, rpc, chain: str) -> ParsedTransaction:
        """
        解析单笔交易，任何异常都不会抛出，而是记录在返回结果中

        Args:
            tx: 交易
            rpc: 链 RPC 网关（需提供 get_transaction_receipt 和 is_healthy）
            chain: 链名称

        Returns:
            ParsedTransaction: 解析结果
        """
        result = ParsedTransaction(tx=tx, chain=chain)

        try:
            receipt = await self._get_receipt_with_retry(tx, rpc, chain)
        except Exception as e:
            result.failed = True
            result.error = str(e) or type(e).__name__
            result.connection_error = is_connection_error(e)
            if result.connection_error:
                logger.warning(f"{chain} 获取交易回执连接错误 {tx.hash[:10]}...: {e}")
            else:
                logger.error(f"{chain} 获取交易回执失败 {tx.hash}: {e}")
            return result

        if not receipt:
            logger.warning(f"{chain} 无法获取交易回执: {tx.hash}")
            result.failed = True
            result.error = "receipt not found"
            return result

        try:
            self._apply_receipt(result, receipt)

            # 只解析成功的交易
            if result.status != 1:
                return result

            result.swap_tag = self._identify_dex_transaction(tx, chain)
            self._parse_logs(result, receipt.get('logs') or [])

            if tx.value > 0:
                result.transfers.append(Transfer(
                    sender=tx.sender,
                    to=tx.to,
                    value=str(tx.value),
                    token_kind=TokenKind.NATIVE,
                    token_address=None,
                    transfer_type=TransferType.TRANSFER,
                    tx_index=tx.tx_index,
                    log_index=-1,  # 原生币转账没有 log
                ))
        except Exception as e:
            logger.error(f"{chain} 解析交易失败 {tx.hash}: {e}", exc_info=True)
            result.failed = True
            result.error = str(e) or type(e).__name__

        return result

    async def _get_receipt_with_retry(self, tx: Transaction, rpc, chain: str) -> Optional[Mapping[str, Any]]:
        """带重试机制的获取交易回执，只重试连接错误，线性退避"""
        max_attempts = self.settings.receipt_retry_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                if not rpc.is_healthy():
                    raise RPCConnectionError("WebSocket 连接未就绪")
                return await rpc.get_transaction_receipt(tx.hash)
            except Exception as e:
                # 最后一次尝试、非连接错误、或连接已确认不可用时直接抛出
                if attempt >= max_attempts or not is_connection_error(e) or not rpc.is_healthy():
                    raise

                logger.warning(
                    f"{chain} 获取交易回执失败 (尝试 {attempt}/{max_attempts}): "
                    f"{tx.hash[:10]}... - {e}"
                )
                await asyncio.sleep(self.settings.receipt_retry_delay * attempt)

        return None

    @staticmethod
    def _apply_receipt(result: ParsedTransaction, receipt: Mapping[str, Any]) -> None:
        result.receipt_found = True
        result.status = to_int(receipt.get('status'))
        result.gas_used = to_int(receipt.get('gasUsed'))
        block_number = receipt.get('blockNumber')
        if block_number is not None:
            result.receipt_block_number = to_int(block_number)

    @staticmethod
    def _identify_dex_transaction(tx: Transaction, chain: str) -> Optional[SwapTag]:
        """通过 to 地址和 methodId 识别 DEX 交易"""
        router_name = lookup_router(tx.to)
        method_name = lookup_method(tx.method_id)

        if not (router_name and method_name):
            return None

        logger.debug(f"{chain} 识别到DEX交易: {router_name} - {method_name} ({tx.hash[:10]}...)")
        return SwapTag(
            router=router_name,
            method=method_name,
            router_address=tx.to,
            is_swap_method=is_swap_method(method_name),
            detection_source=DetectionSource.METHOD_ID,
        )

    def _parse_logs(self, result: ParsedTransaction, logs) -> None:
        """按原始顺序解析回执日志"""
        has_swap_log = False

        for log_index, log in enumerate(logs):
            topics = log.get('topics') or []
            if not topics:
                continue

            topic = to_hex_str(topics[0])
            try:
                if topic == ERC20_TRANSFER_TOPIC:
                    result.transfers.append(self._decode_erc20_transfer(result, log, log_index))
                elif topic == UNISWAP_V2_SWAP_TOPIC:
                    result.swaps.append(self._decode_v2_swap(result, log, log_index))
                    has_swap_log = True
            except DecodeError as e:
                logger.debug(f"{result.chain} 跳过日志 {result.hash[:10]}... log {log_index}: {e}")
            except Exception as e:
                logger.error(f"{result.chain} 解析日志失败 {result.hash} log {log_index}: {e}")

        # methodId 无法识别但日志中有 Swap 事件时，按日志推断
        if result.swap_tag is None and has_swap_log:
            tx = result.tx
            router_name = lookup_router(tx.to) or 'Unknown DEX'
            result.swap_tag = SwapTag(
                router=router_name,
                method='swap',
                router_address=tx.to or '',
                is_swap_method=True,
                detection_source=DetectionSource.LOG_HEURISTIC,
            )
            logger.debug(f"{result.chain} 通过logs识别到Swap交易: {router_name} ({tx.hash[:10]}...)")

    @staticmethod
    def _decode_erc20_transfer(result: ParsedTransaction, log: Mapping[str, Any], log_index: int) -> Transfer:
        # Transfer(address indexed from, address indexed to, uint256 value)
        topics = log['topics']
        if len(topics) != 3:
            raise DecodeError(f"Transfer 事件 topic 数量为 {len(topics)}，期望 3（可能是 ERC721）")

        try:
            sender = topic_to_address(topics[1])
            to = topic_to_address(topics[2])
            value = to_int(log.get('data'))
        except ValueError as e:
            raise DecodeError(f"Transfer 事件数据格式错误: {e}")

        token_address = normalize_address(log.get('address')) or ''
        result.tokens.add(token_address)

        if sender == ZERO_ADDRESS:
            transfer_type = TransferType.MINT
        elif to == ZERO_ADDRESS:
            transfer_type = TransferType.BURN
        else:
            transfer_type = TransferType.TRANSFER

        return Transfer(
            sender=sender,
            to=to,
            value=str(value),
            token_kind=TokenKind.ERC20,
            token_address=token_address,
            transfer_type=transfer_type,
            tx_index=result.tx.tx_index,
            log_index=log_index,
        )

    @staticmethod
    def _decode_v2_swap(result: ParsedTransaction, log: Mapping[str, Any], log_index: int) -> Swap:
        topics = log['topics']
        if len(topics) != 3:
            raise DecodeError(f"Swap 事件 topic 数量为 {len(topics)}，期望 3")

        try:
            sender = topic_to_address(topics[1])
            recipient = topic_to_address(topics[2])
            amount0_in, amount1_in, amount0_out, amount1_out = split_words(log.get('data'), 4)
        except ValueError as e:
            raise DecodeError(f"Swap 事件数据格式错误: {e}")

        # amount0In 非零时优先视为 token0 -> token1
        if amount0_in > 0:
            in_slot, out_slot = 'token0', 'token1'
            in_amount, out_amount = amount0_in, amount1_out
        else:
            in_slot, out_slot = 'token1', 'token0'
            in_amount, out_amount = amount1_in, amount0_out

        tx = result.tx
        if result.swap_tag is not None:
            router = result.swap_tag.router
            method = result.swap_tag.method
            source = result.swap_tag.detection_source
        else:
            router = lookup_router(tx.to) or 'Unknown'
            method = 'swap'
            source = DetectionSource.LOG_HEURISTIC

        return Swap(
            sender=sender,
            recipient=recipient,
            pair_address=normalize_address(log.get('address')) or '',
            in_slot=in_slot,
            out_slot=out_slot,
            in_amount=str(in_amount),
            out_amount=str(out_amount),
            router=router,
            method=method,
            detection_source=source,
            tx_index=tx.tx_index,
            log_index=log_index,
        )
