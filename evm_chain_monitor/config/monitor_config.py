"""
监控配置管理模块

MonitorConfig 对应一条链的监听配置（数据库 monitor_chain_config 表或 YAML 中的一行）
MonitorSettings 统一管理批处理、限速、重试等调优参数
"""

from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, Optional, Tuple

from evm_chain_monitor.core.exceptions import ConfigError

DEFAULT_POLL_INTERVAL_MS = 3000

# 刷新配置时参与比较的字段，任一字段变化都会重启监听器
TRACKED_FIELDS: Tuple[str, ...] = (
    'chain', 'chain_id', 'symbol', 'rpc_http', 'rpc_ws',
    'interval', 'internal_rpc_http', 'internal_rpc_ws', 'full_tx',
)

# 兼容驼峰命名的输入
_FIELD_ALIASES = {
    'chainId': 'chain_id',
    'rpcHttp': 'rpc_http',
    'rpcWs': 'rpc_ws',
    'internalRpcHttp': 'internal_rpc_http',
    'internalRpcWs': 'internal_rpc_ws',
    'pollIntervalMs': 'interval',
    'poll_interval_ms': 'interval',
    'fullTx': 'full_tx',
    'enable': 'enabled',
}


def _to_flag(value: Any, default: bool = False) -> bool:
    """把 0/1、布尔值、字符串统一转换为布尔值"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _to_optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def is_socket_url(url: Optional[str]) -> bool:
    """判断地址是否为 WebSocket 传输"""
    return bool(url) and url.lower().startswith(('ws://', 'wss://'))


@dataclass(frozen=True)
class MonitorConfig:
    """单条链的监听配置 - 加载后不可变，只能通过刷新流程整体替换"""

    id: int
    chain: str
    chain_id: Optional[str] = None
    symbol: Optional[str] = None
    rpc_http: Optional[str] = None
    rpc_ws: Optional[str] = None
    internal_rpc_http: Optional[str] = None
    internal_rpc_ws: Optional[str] = None
    interval: int = DEFAULT_POLL_INTERVAL_MS  # 轮询间隔（毫秒）
    full_tx: bool = True  # 是否获取完整交易并解析
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MonitorConfig':
        """
        从字典创建配置并校验

        Args:
            data: 配置字典（数据库行或 YAML 中的一项）

        Returns:
            MonitorConfig: 配置实例

        Raises:
            ConfigError: 缺少必填字段或字段格式错误
        """
        if not isinstance(data, dict):
            raise ConfigError(f"配置格式错误，期望字典: {data!r}")

        normalized = {}
        for key, value in data.items():
            normalized[_FIELD_ALIASES.get(key, key)] = value

        if normalized.get('id') is None:
            raise ConfigError(f"配置缺少 id: {data!r}")
        if not normalized.get('chain'):
            raise ConfigError(f"配置 {normalized.get('id')} 缺少 chain")

        try:
            config_id = int(normalized['id'])
        except (TypeError, ValueError):
            raise ConfigError(f"配置 id 必须为整数: {normalized['id']!r}")

        interval = normalized.get('interval')
        try:
            interval = int(interval) if interval is not None else DEFAULT_POLL_INTERVAL_MS
        except (TypeError, ValueError):
            raise ConfigError(f"配置 {config_id} 的 interval 格式错误: {interval!r}")
        if interval <= 0:
            interval = DEFAULT_POLL_INTERVAL_MS

        chain_id = normalized.get('chain_id')

        return cls(
            id=config_id,
            chain=str(normalized['chain']),
            chain_id=str(chain_id) if chain_id is not None else None,
            symbol=_to_optional_str(normalized.get('symbol')),
            rpc_http=_to_optional_str(normalized.get('rpc_http')),
            rpc_ws=_to_optional_str(normalized.get('rpc_ws')),
            internal_rpc_http=_to_optional_str(normalized.get('internal_rpc_http')),
            internal_rpc_ws=_to_optional_str(normalized.get('internal_rpc_ws')),
            interval=interval,
            full_tx=_to_flag(normalized.get('full_tx'), default=True),
            enabled=_to_flag(normalized.get('enabled'), default=True),
        )

    def resolve_rpc_url(self) -> Optional[str]:
        """按优先级选择 RPC 地址：内网 WS > 公网 WS > 内网 HTTP > 公网 HTTP"""
        return (self.internal_rpc_ws or self.rpc_ws or
                self.internal_rpc_http or self.rpc_http)

    def push_endpoint(self) -> Optional[str]:
        """推送（订阅）模式使用的地址"""
        return self.internal_rpc_ws or self.rpc_ws

    def supports_push(self) -> bool:
        return is_socket_url(self.push_endpoint())

    @property
    def poll_interval_seconds(self) -> float:
        return self.interval / 1000.0

    def changed_fields(self, other: 'MonitorConfig') -> Tuple[str, ...]:
        """返回与另一份配置相比发生变化的字段"""
        return tuple(name for name in TRACKED_FIELDS
                     if getattr(self, name) != getattr(other, name))

    def is_changed(self, other: 'MonitorConfig') -> bool:
        return bool(self.changed_fields(other))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# monitor 段中的毫秒键 -> MonitorSettings 中的秒字段
_MS_KEYS = {
    'batch_pause_ms': 'batch_pause',
    'restart_delay_ms': 'restart_delay',
    'receipt_retry_delay_ms': 'receipt_retry_delay',
}


@dataclass(frozen=True)
class MonitorSettings:
    """监控调优参数 - 批处理、限速、重启与重试"""

    batch_size: int = 5  # 每批并发解析的交易数
    batch_pause: float = 0.2  # 批次之间的休息时间（秒）
    max_connection_errors: int = 10  # 单个区块允许的最大连接错误数
    restart_delay: float = 5.0  # 订阅出错后重启前的等待时间（秒）
    receipt_retry_attempts: int = 3  # 获取交易回执的最大尝试次数
    receipt_retry_delay: float = 1.0  # 回执重试的基础延迟（秒），按尝试次数线性增长

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'MonitorSettings':
        """从 config.yml 的 monitor 段创建，时间类参数以毫秒配置"""
        data = data or {}
        defaults = cls()

        seconds_keys = sorted(key for key in _MS_KEYS.values() if key in data)
        if seconds_keys:
            raise ConfigError(f"时间参数必须使用毫秒键配置: "
                              f"{', '.join(k + '_ms' for k in seconds_keys)}")

        known = {f.name for f in fields(cls)} - set(_MS_KEYS.values())
        values = {key: value for key, value in data.items() if key in known}
        for ms_key, field_name in _MS_KEYS.items():
            if ms_key in data:
                try:
                    values[field_name] = float(data[ms_key]) / 1000.0
                except (TypeError, ValueError):
                    raise ConfigError(f"监控参数 {ms_key} 格式错误: {data[ms_key]!r}")

        settings = cls(**values)
        if settings.batch_size <= 0 or settings.receipt_retry_attempts <= 0:
            raise ConfigError(f"监控参数无效: batch_size={settings.batch_size}, "
                              f"receipt_retry_attempts={settings.receipt_retry_attempts}")
        if settings.max_connection_errors <= 0:
            return cls(**{**asdict(settings),
                          'max_connection_errors': defaults.max_connection_errors})
        return settings
