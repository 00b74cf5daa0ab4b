"""
异常定义与错误分类

- RPCConnectionError: 传输层瞬时故障（连接未打开、重置、DNS、服务不可用），可重试
- DecodeError: 日志结构异常，单条日志跳过
- ConfigError: 链缺少可用的 RPC 地址等配置问题，初始化时致命
- PersistenceError: 存储写入失败，只记录日志
"""

import asyncio
from typing import Optional

import aiohttp
from web3.exceptions import ProviderConnectionError


class MonitorError(Exception):
    """监控服务异常基类"""


class RPCConnectionError(MonitorError):
    """RPC 连接异常（瞬时，可重试）"""


class DecodeError(MonitorError):
    """日志/数据解码异常"""


class ConfigError(MonitorError):
    """配置异常"""


class PersistenceError(MonitorError):
    """持久化异常"""


# 常见的连接错误特征（小写比较）
CONNECTION_ERROR_SIGNATURES = (
    'connection not open',
    'connection error',
    'websocket is not open',
    'provider started to reconnect',
    'socket hang up',
    'econnreset',
    'econnrefused',
    'enotfound',
    'connection closed',
    'connection reset',
    'service unavailable',
    'timed out',
)

_CONNECTION_ERROR_TYPES = (
    RPCConnectionError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    aiohttp.ClientConnectionError,
    ProviderConnectionError,
)


def _error_code(error: BaseException) -> Optional[int]:
    code = getattr(error, 'code', None)
    if code is None:
        code = getattr(error, 'status', None)
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def is_connection_error(error: Optional[BaseException]) -> bool:
    """判断异常是否属于连接类错误"""
    if error is None:
        return False

    if isinstance(error, _CONNECTION_ERROR_TYPES):
        return True

    if _error_code(error) == 503:
        return True

    if type(error).__name__ in ('ConnectionNotOpenError', 'ConnectionClosed',
                                'ConnectionClosedError', 'ConnectionClosedOK'):
        return True

    message = str(error).lower()
    return any(signature in message for signature in CONNECTION_ERROR_SIGNATURES)
