"""
单链监听器

负责一条链的连接管理、推送/轮询模式选择、区块获取与交易解析，
解析结果交给持久化网关保存
"""

import asyncio
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from evm_chain_monitor.config.monitor_config import MonitorConfig, MonitorSettings, is_socket_url
from evm_chain_monitor.core.exceptions import ConfigError, is_connection_error
from evm_chain_monitor.managers.delivery_handles import HeaderSubscription, Ticker
from evm_chain_monitor.managers.rpc_manager import RPCManager
from evm_chain_monitor.models.data_types import (
    Block, BlockStats, DeliveryMode, MonitorState, MonitorStatus, ParsedTransaction,
    Transaction, TxOutcome,
)
from evm_chain_monitor.processors.transaction_parser import TransactionParser
from evm_chain_monitor.utils.hex_utils import to_int
from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)

# 所有监听器共享的无状态解析器
_default_parser = TransactionParser()


class ChainMonitor:
    """单链监听器 - 推送与轮询共用同一套区块处理逻辑，只有区块来源不同"""

    def __init__(
        self,
        config: MonitorConfig,
        persistence,
        parser: Optional[TransactionParser] = None,
        settings: Optional[MonitorSettings] = None,
        rpc_factory: Callable[[str, str], Any] = RPCManager,
    ):
        """
        初始化监听器

        Args:
            config: 链监听配置
            persistence: 持久化网关
            parser: 交易解析器，默认使用共享实例
            settings: 批处理、限速等调优参数
            rpc_factory: 根据 (rpc_url, chain) 创建 RPC 网关
        """
        self.config = config
        self.persistence = persistence
        self.settings = settings or MonitorSettings()
        self.parser = parser or (TransactionParser(self.settings) if settings else _default_parser)
        self.rpc_factory = rpc_factory

        self.rpc = None
        self.rpc_url: Optional[str] = None
        self.state = MonitorState.STOPPED
        self.delivery_mode: Optional[DeliveryMode] = None
        self.current_block_height: int = 0
        self.blocks_processed: int = 0

        self._ticker: Optional[Ticker] = None
        self._subscription: Optional[HeaderSubscription] = None
        self._restart_task: Optional[asyncio.Task] = None

    @property
    def chain(self) -> str:
        return self.config.chain

    @property
    def is_running(self) -> bool:
        return self.state is MonitorState.RUNNING

    async def init(self) -> None:
        """选择 RPC 地址并验证连接"""
        self.state = MonitorState.INITIALIZING

        self.rpc_url = self.config.resolve_rpc_url()
        if not self.rpc_url:
            self.state = MonitorState.STOPPED
            raise ConfigError(f"配置 {self.chain} 缺少RPC连接地址")

        try:
            self.rpc = self.rpc_factory(self.rpc_url, self.chain)
            await self.rpc.connect()
            latest_block = await self.rpc.get_latest_height()
        except Exception as e:
            self.state = MonitorState.STOPPED
            logger.error(f"{self.chain} 初始化失败: {e}")
            raise

        logger.info(f"{self.chain} 区块链连接成功: {self.rpc_url}，最新区块: {latest_block}")

    async def start(self) -> None:
        """开始监听"""
        if self.is_running:
            logger.warning(f"{self.chain} 监听器已在运行中")
            return

        if self.rpc is None:
            raise ConfigError(f"{self.chain} 监听器未初始化")

        self.state = MonitorState.RUNNING
        try:
            await self.rpc.connect()
            latest_block = await self.rpc.get_latest_height()
            # 水位只增不减
            self.current_block_height = max(self.current_block_height, latest_block)
            logger.info(f"{self.chain} 开始监听，当前区块高度: {self.current_block_height}")

            if is_socket_url(self.rpc_url) and await self._start_push():
                return
            self._start_pull()

        except Exception as e:
            logger.error(f"{self.chain} 启动监听失败: {e}")
            self.state = MonitorState.STOPPED
            await self._release_handles()
            raise

    async def _start_push(self) -> bool:
        """WebSocket 订阅模式，订阅失败时返回 False 由调用方降级"""
        subscription = HeaderSubscription(
            self.rpc,
            on_header=self._on_header,
            on_error=self._on_subscription_error,
            name=f"{self.chain}-newHeads",
        )
        try:
            await subscription.start()
        except Exception as e:
            logger.error(f"{self.chain} WebSocket监听启动失败: {e}")
            logger.info(f"{self.chain} 降级到轮询模式")
            return False

        self._subscription = subscription
        self.delivery_mode = DeliveryMode.PUSH
        logger.info(f"{self.chain} WebSocket监听模式启动成功")
        return True

    def _start_pull(self) -> None:
        """轮询模式"""
        self._ticker = Ticker(self.config.poll_interval_seconds, self.poll_once, name=f"{self.chain}-poller")
        self._ticker.start()
        self.delivery_mode = DeliveryMode.PULL
        logger.info(f"{self.chain} 轮询监听模式启动成功，间隔: {self.config.interval}ms")

    async def _on_header(self, header: Mapping[str, Any]) -> None:
        """处理推送的区块头"""
        if not self.is_running:
            return

        try:
            if header.get('transactions') is not None:
                block = Block.from_web3(self.chain, header)
            else:
                block = await self.rpc.get_block(to_int(header.get('number')), self.config.full_tx)
        except Exception as e:
            logger.error(f"{self.chain} 获取区块失败 #{header.get('number')}: {e}")
            return

        await self.process_block(block)
        self.current_block_height = max(self.current_block_height, block.number)

    def _on_subscription_error(self, error: BaseException) -> None:
        logger.error(f"{self.chain} WebSocket订阅错误: {error}")
        if not self.is_running:
            return
        if self._restart_task is not None and not self._restart_task.done():
            return
        self._restart_task = asyncio.create_task(self.restart(), name=f"{self.chain}-restart")

    async def poll_once(self) -> int:
        """
        轮询一次：从水位+1 处理到最新高度

        Returns:
            本次处理的区块数
        """
        if not self.is_running:
            return 0

        try:
            latest_block = await self.rpc.get_latest_height()
        except Exception as e:
            logger.error(f"{self.chain} 轮询监听错误: {e}")
            return 0

        processed = 0
        for block_number in range(self.current_block_height + 1, latest_block + 1):
            if not self.is_running:
                break

            try:
                block = await self.rpc.get_block(block_number, self.config.full_tx)
            except Exception as e:
                # 不推进水位，下一轮从该区块重试
                logger.error(f"{self.chain} 获取区块 #{block_number} 失败: {e}")
                break

            await self.process_block(block)
            self.current_block_height = block_number
            processed += 1

        return processed

    async def process_block(self, block: Block) -> BlockStats:
        """处理区块：解析交易、保存区块摘要和解析结果，不会抛出异常"""
        stats = BlockStats(total=block.tx_count)
        parsed_list: List[ParsedTransaction] = []

        try:
            logger.info(f"{self.chain} 处理区块 #{block.number}, 交易数: {block.tx_count}")

            if self.config.full_tx and block.tx_count > 0:
                if not self.is_connection_healthy():
                    logger.warning(f"{self.chain} 连接不稳定，跳过区块 #{block.number} 的详细解析")
                    stats.skipped = True
                else:
                    logger.info(f"{self.chain} 区块 #{block.number} 开始解析 {block.tx_count} 笔交易")
                    parsed_list = await self._parse_transactions(block, stats)
                    logger.info(
                        f"{self.chain} 区块 #{block.number} 解析完成: "
                        f"总交易={stats.total}, 原生币转账={stats.native_transfers}, "
                        f"代币转账={stats.token_transfers}, Swap={stats.swaps}, "
                        f"合约创建={stats.contract_creations}, 失败={stats.failed}"
                    )

            await self._save_block(block, stats)
            for parsed in parsed_list:
                await self._save_transaction(parsed)

        except Exception as e:
            logger.error(f"{self.chain} 处理区块数据失败 #{block.number}: {e}", exc_info=True)

        self.blocks_processed += 1
        return stats

    async def _parse_transactions(self, block: Block, stats: BlockStats) -> List[ParsedTransaction]:
        """分批并发解析交易，批次之间串行执行"""
        transactions = list(block.transactions)
        batch_size = self.settings.batch_size
        parsed_list: List[ParsedTransaction] = []

        for start in range(0, len(transactions), batch_size):
            # 检查连接错误是否过多
            if stats.connection_errors >= self.settings.max_connection_errors:
                remaining = len(transactions) - start
                logger.warning(f"{self.chain} 连接错误过多，停止处理区块 #{block.number} 剩余 {remaining} 笔交易")
                stats.failed += remaining
                stats.aborted = True
                break

            batch = transactions[start:start + batch_size]
            for outcome in await self._run_batch(batch):
                self._apply_outcome(outcome, stats)
                if outcome.parsed is not None and outcome.parsed.receipt_found:
                    parsed_list.append(outcome.parsed)

            # 每处理一批后稍微休息，避免RPC请求过于频繁
            if start + batch_size < len(transactions):
                await asyncio.sleep(self.settings.batch_pause)

        return parsed_list

    async def _run_batch(self, batch: Sequence[Transaction]) -> List[TxOutcome]:
        """并发处理一批交易，等待全部完成，每笔交易得到独立的结算结果"""

        async def settle(tx: Transaction) -> TxOutcome:
            try:
                parsed = await self.parser.parse(tx, self.rpc, self.chain)
            except Exception as e:
                return TxOutcome(tx=tx, error=e, connection_error=is_connection_error(e))
            return TxOutcome(tx=tx, parsed=parsed, connection_error=parsed.connection_error)

        return list(await asyncio.gather(*(settle(tx) for tx in batch)))

    def _apply_outcome(self, outcome: TxOutcome, stats: BlockStats) -> None:
        stats.attempted += 1
        if outcome.connection_error:
            stats.connection_errors += 1

        if outcome.error is not None:
            stats.failed += 1
            logger.error(f"{self.chain} 处理交易失败 {outcome.tx.hash}: {outcome.error}")
            return

        parsed = outcome.parsed
        if parsed.is_native_transfer():
            stats.native_transfers += 1
        if parsed.is_token_transfer():
            stats.token_transfers += 1
        if parsed.is_swap():
            stats.swaps += 1
        if outcome.tx.is_contract_creation:
            stats.contract_creations += 1
        if parsed.status != 1:
            stats.failed += 1

        if parsed.transfers or parsed.swaps:
            summary = parsed.summary()
            logger.debug(
                f"{self.chain} 交易解析: {summary['hash'][:10]}... "
                f"转账={summary['transfers_count']}, Swap={summary['swaps_count']}, "
                f"Gas={summary['gas_used']}, 状态={summary['status']}"
            )

    async def _save_block(self, block: Block, stats: BlockStats) -> None:
        summary = {
            'chain': self.chain,
            'number': block.number,
            'hash': block.hash,
            'parent_hash': block.parent_hash,
            'timestamp': block.timestamp,
            'tx_count': stats.total,
            'native_transfers': stats.native_transfers,
            'token_transfers': stats.token_transfers,
            'swaps': stats.swaps,
            'contract_creations': stats.contract_creations,
            'failed': stats.failed,
            'gas_used': block.gas_used,
            'gas_limit': block.gas_limit,
            'size': block.size,
        }
        await self._persist('save_block', summary)

    async def _save_transaction(self, parsed: ParsedTransaction) -> None:
        tx = parsed.tx
        block_number = parsed.block_number

        await self._persist('save_transaction', {
            'chain': self.chain,
            'hash': tx.hash,
            'block_number': block_number,
            'tx_index': tx.tx_index,
            'from': tx.sender,
            'to': tx.to,
            'value': str(tx.value),
            'gas': tx.gas,
            'gas_price': str(tx.gas_price),
            'gas_used': parsed.gas_used,
            'status': parsed.status,
            'method_id': tx.method_id,
            'nonce': tx.nonce,
        })

        if parsed.transfers:
            await self._persist('save_transfers_batch', [
                {'chain': self.chain, 'tx_hash': tx.hash, 'block_number': block_number, **transfer.to_dict()}
                for transfer in parsed.transfers
            ])

        if parsed.swaps:
            await self._persist('save_swaps_batch', [
                {'chain': self.chain, 'tx_hash': tx.hash, 'block_number': block_number, **swap.to_dict()}
                for swap in parsed.swaps
            ])

    async def _persist(self, method: str, payload) -> None:
        """持久化尽力而为，失败只记录日志"""
        if self.persistence is None:
            return
        try:
            await getattr(self.persistence, method)(payload)
        except Exception as e:
            logger.error(f"{self.chain} 保存数据失败 ({method}): {e}")

    async def _release_handles(self) -> None:
        """释放定时器和订阅句柄，并等待正在处理的区块完成"""
        ticker, self._ticker = self._ticker, None
        if ticker is not None:
            ticker.cancel()
            await ticker.wait_closed()

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            try:
                await subscription.cancel()
            except Exception as e:
                logger.error(f"{self.chain} 取消订阅失败: {e}")
            await subscription.wait_closed()

    async def stop(self) -> None:
        """停止监听：不再调度新的区块，正在处理的批次允许执行完"""
        restart_task, self._restart_task = self._restart_task, None
        if (restart_task is not None and restart_task is not asyncio.current_task()
                and not restart_task.done()):
            restart_task.cancel()

        if not self.is_running and self._ticker is None and self._subscription is None:
            return

        self.state = MonitorState.STOPPED
        await self._release_handles()
        logger.info(f"{self.chain} 监听器已停止")

    async def restart(self) -> None:
        """重启监听器：停止后等待固定时间再启动"""
        logger.info(f"{self.chain} 正在重启监听器...")
        self.state = MonitorState.STOPPED
        await self._release_handles()
        if self.rpc is not None:
            await self.rpc.disconnect()

        await asyncio.sleep(self.settings.restart_delay)

        try:
            await self.start()
        except Exception as e:
            logger.error(f"{self.chain} 重启失败: {e}")

    async def close(self) -> None:
        """停止监听并释放连接"""
        await self.stop()
        if self.rpc is not None:
            await self.rpc.disconnect()

    def is_connection_healthy(self) -> bool:
        if self.rpc is None:
            return False
        try:
            return bool(self.rpc.is_healthy())
        except Exception:
            return False

    def get_status(self) -> MonitorStatus:
        """获取状态信息"""
        return MonitorStatus(
            chain=self.chain,
            chain_id=self.config.chain_id,
            symbol=self.config.symbol,
            is_running=self.is_running,
            current_block_height=self.current_block_height,
            rpc_url=self.rpc_url,
            connection_healthy=self.is_connection_healthy(),
            config_id=self.config.id,
            delivery_mode=self.delivery_mode.value if self.delivery_mode else None,
            blocks_processed=self.blocks_processed,
        )

    def get_rpc_stats(self) -> Dict[str, Any]:
        if self.rpc is None or not hasattr(self.rpc, 'get_stats'):
            return {}
        return self.rpc.get_stats()
