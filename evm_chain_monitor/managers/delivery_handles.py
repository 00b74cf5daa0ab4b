"""
区块投递句柄

Ticker: 固定间隔轮询，取消后不再调度新的 tick，正在执行的 tick 会执行完
HeaderSubscription: 新区块头订阅，接收与处理分离，取消后不再处理新的区块头
"""

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional

from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class Ticker:
    """可取消的固定间隔定时器，tick 之间不会重叠"""

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]], name: str = 'ticker'):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stop_event.is_set()

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name} 执行失败: {e}", exc_info=True)

    def cancel(self) -> None:
        """停止调度新的 tick；正在执行的 tick 会继续执行完"""
        self._stop_event.set()

    async def wait_closed(self) -> None:
        """等待当前 tick 执行完毕"""
        if self._task is not None and self._task is not asyncio.current_task():
            try:
                await self._task
            except asyncio.CancelledError:
                pass


class HeaderSubscription:
    """
    新区块头订阅句柄

    接收任务只负责从连接读取区块头放入队列，处理任务按顺序逐个处理；
    取消时立即停止接收，处理任务完成当前区块后退出
    """

    def __init__(
        self,
        rpc,
        on_header: Callable[[Mapping[str, Any]], Awaitable[None]],
        on_error: Callable[[BaseException], None],
        name: str = 'subscription',
    ):
        self.rpc = rpc
        self.on_header = on_header
        self.on_error = on_error
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._receiver: Optional[asyncio.Task] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        return not self._closed and self._receiver is not None and not self._receiver.done()

    async def start(self) -> None:
        """建立订阅；失败时抛出异常，由调用方决定是否降级"""
        await self.rpc.subscribe_new_heads()
        self._receiver = asyncio.create_task(self._receive(), name=f"{self.name}-receiver")
        self._worker = asyncio.create_task(self._work(), name=f"{self.name}-worker")

    async def _receive(self) -> None:
        try:
            async for header in self.rpc.iter_new_heads():
                if self._closed:
                    break
                self._queue.put_nowait(header)
            if not self._closed:
                raise ConnectionError("订阅流意外结束")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._closed:
                self.on_error(e)

    async def _work(self) -> None:
        while True:
            header = await self._queue.get()
            if header is None or self._closed:
                break
            try:
                await self.on_header(header)
            except Exception as e:
                logger.error(f"{self.name} 处理区块头失败: {e}", exc_info=True)

    async def cancel(self) -> None:
        """取消订阅并释放接收任务；处理任务完成当前区块后退出"""
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        if self._receiver is not None and self._receiver is not current and not self._receiver.done():
            self._receiver.cancel()
            try:
                await self._receiver
            except asyncio.CancelledError:
                pass

        # 唤醒处理任务使其退出
        self._queue.put_nowait(None)

        await self.rpc.unsubscribe()

    async def wait_closed(self) -> None:
        if self._worker is not None and self._worker is not asyncio.current_task():
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
