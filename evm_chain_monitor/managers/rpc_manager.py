"""
RPC调用管理器

负责单条链的 Web3 连接管理（HTTP 或 WebSocket）、订阅和调用统计
"""

import time
from collections import defaultdict
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional

from web3 import AsyncWeb3, WebSocketProvider
from web3.exceptions import TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from evm_chain_monitor.config.monitor_config import is_socket_url
from evm_chain_monitor.core.exceptions import ConfigError, is_connection_error
from evm_chain_monitor.models.data_types import Block
from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class RPCManager:
    """RPC调用管理器 - 一个实例对应一条链的一个连接"""

    def __init__(self, rpc_url: str, chain_name: str = 'unknown'):
        if not rpc_url:
            raise ConfigError(f"{chain_name} 缺少RPC连接地址")

        self.rpc_url = rpc_url
        self.chain_name = chain_name
        self.is_socket = is_socket_url(rpc_url)

        if self.is_socket:
            self.w3 = AsyncWeb3(WebSocketProvider(rpc_url))
        else:
            self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        # WebSocket 连接状态；HTTP 连接视为始终可用
        self._socket_open: bool = False
        self._subscription_id: Optional[str] = None

        # 统计相关
        self.rpc_calls: int = 0
        self.rpc_errors: int = 0
        self.rpc_calls_by_type: Dict[str, int] = defaultdict(int)
        self.start_time: float = time.time()

    def log_rpc_call(self, call_type: str = 'other') -> None:
        """记录RPC调用统计"""
        self.rpc_calls += 1
        self.rpc_calls_by_type[call_type] += 1

    async def _call(self, call_type: str, func: Callable[[], Awaitable[Any]]) -> Any:
        self.log_rpc_call(call_type)
        try:
            result = await func()
        except Exception as e:
            self.rpc_errors += 1
            if self.is_socket and is_connection_error(e):
                self._socket_open = False
            raise
        if self.is_socket:
            self._socket_open = True
        return result

    async def connect(self) -> None:
        """建立连接（WebSocket 需要显式连接，HTTP 无需操作）"""
        if not self.is_socket or self._socket_open:
            return
        await self.w3.provider.connect()
        self._socket_open = True
        logger.debug(f"{self.chain_name} WebSocket 已连接: {self.rpc_url}")

    async def disconnect(self) -> None:
        """断开连接"""
        if not self.is_socket:
            return
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.warning(f"{self.chain_name} 断开WebSocket连接失败: {e}")
        finally:
            self._socket_open = False
            self._subscription_id = None

    def is_healthy(self) -> bool:
        """检查连接是否可用：WebSocket 检查打开状态，HTTP 视为始终健康"""
        if not self.is_socket:
            return True
        return self._socket_open

    async def probe(self) -> bool:
        """主动探测连接是否存活"""
        try:
            connected = await self.w3.is_connected()
        except Exception as e:
            logger.debug(f"{self.chain_name} 连接探测失败: {e}")
            connected = False
        if self.is_socket:
            self._socket_open = bool(connected)
        return bool(connected)

    async def get_latest_height(self) -> int:
        """获取最新区块号"""
        return int(await self._call('get_block_number', lambda: self.w3.eth.get_block_number()))

    async def get_block(self, block_number: int, full_transactions: bool = True) -> Block:
        """获取区块信息"""
        raw = await self._call(
            'get_block',
            lambda: self.w3.eth.get_block(block_number, full_transactions=full_transactions)
        )
        return Block.from_web3(self.chain_name, raw)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        """获取交易回执，不存在时返回 None"""
        try:
            return await self._call(
                'get_transaction_receipt',
                lambda: self.w3.eth.get_transaction_receipt(tx_hash)
            )
        except TransactionNotFound:
            return None

    async def subscribe_new_heads(self) -> str:
        """订阅新区块头，仅 WebSocket 可用"""
        if not self.is_socket:
            raise ConfigError(f"{self.chain_name} 非WebSocket连接，无法订阅: {self.rpc_url}")
        await self.connect()
        self._subscription_id = await self._call('subscribe', lambda: self.w3.eth.subscribe('newHeads'))
        logger.debug(f"{self.chain_name} 订阅成功: {self._subscription_id}")
        return self._subscription_id

    async def iter_new_heads(self) -> AsyncIterator[Mapping[str, Any]]:
        """逐个产出推送的区块头；连接断开时抛出异常"""
        try:
            async for message in self.w3.socket.process_subscriptions():
                header = message.get('result') if isinstance(message, Mapping) else None
                if header is not None:
                    yield header
        except Exception as e:
            if is_connection_error(e):
                self._socket_open = False
            raise

    async def unsubscribe(self) -> None:
        """取消订阅（尽力而为）"""
        subscription_id, self._subscription_id = self._subscription_id, None
        if not subscription_id or not self._socket_open:
            return
        try:
            await self.w3.eth.unsubscribe(subscription_id)
        except Exception as e:
            logger.warning(f"{self.chain_name} 取消订阅失败: {e}")

    async def test_connection(self) -> Dict[str, Any]:
        """测试网络连接并返回基本信息"""
        logger.info(f"正在测试RPC {self.rpc_url} 连接...")
        try:
            await self.connect()
            latest_block = await self.get_latest_height()
            return {
                'success': True,
                'latest_block': latest_block,
                'network': self.chain_name,
                'rpc_url': self.rpc_url
            }
        except Exception as e:
            return {
                'success': False,
                'error': str(e),
                'rpc_url': self.rpc_url
            }

    def get_stats(self) -> Dict[str, Any]:
        """获取调用统计信息"""
        runtime = time.time() - self.start_time
        return {
            'rpc_calls': self.rpc_calls,
            'rpc_errors': self.rpc_errors,
            'avg_rpc_per_second': self.rpc_calls / runtime if runtime > 0 else 0.0,
            'rpc_calls_by_type': dict(self.rpc_calls_by_type),
        }

    def reset_stats(self) -> None:
        """重置统计数据"""
        self.rpc_calls = 0
        self.rpc_errors = 0
        self.rpc_calls_by_type.clear()
        self.start_time = time.time()
        logger.info(f"{self.chain_name} RPC统计数据已重置")
