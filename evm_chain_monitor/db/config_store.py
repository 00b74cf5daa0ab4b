"""
监听配置存储

DatabaseConfigStore 读写 monitor_chain_config 表
StaticConfigStore 使用 config.yml 中的静态链配置（数据库禁用时）
"""

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import select, update

from evm_chain_monitor.config.monitor_config import MonitorConfig
from evm_chain_monitor.core.exceptions import ConfigError
from evm_chain_monitor.models.chain_models import MonitorChainConfig
from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


def _parse_rows(rows: Iterable[Dict[str, Any]]) -> List[MonitorConfig]:
    """把原始配置行转换为 MonitorConfig，无效的行记录日志后跳过"""
    configs = []
    for row in rows:
        try:
            configs.append(MonitorConfig.from_dict(row))
        except ConfigError as e:
            logger.error(f"忽略无效的链配置: {e}")
    return configs


class DatabaseConfigStore:
    """基于数据库的配置存储"""

    def __init__(self, db_manager):
        self.db_manager = db_manager

    async def list_enabled_configs(self) -> List[MonitorConfig]:
        async with self.db_manager.get_async_session() as session:
            result = await session.execute(
                select(MonitorChainConfig)
                .where(MonitorChainConfig.enable == 1)
                .order_by(MonitorChainConfig.id)
            )
            rows = [record.to_config_dict() for record in result.scalars().all()]
        return _parse_rows(rows)

    async def get_config_by_id(self, config_id: int) -> Optional[MonitorConfig]:
        async with self.db_manager.get_async_session() as session:
            record = await session.get(MonitorChainConfig, config_id)
            row = record.to_config_dict() if record is not None else None

        if row is None:
            return None
        parsed = _parse_rows([row])
        return parsed[0] if parsed else None

    async def set_enabled(self, config_id: int, enabled: bool) -> bool:
        """更新启用状态，配置不存在时返回 False"""
        async with self.db_manager.get_async_session() as session:
            result = await session.execute(
                update(MonitorChainConfig)
                .where(MonitorChainConfig.id == config_id)
                .values(enable=1 if enabled else 0)
            )
            updated = result.rowcount > 0

        if updated:
            logger.info(f"✅ 配置 {config_id} 状态更新为 {int(enabled)}")
        else:
            logger.warning(f"⚠️ 配置 {config_id} 不存在")
        return updated


class StaticConfigStore:
    """内存中的配置存储，set_enabled 只修改本进程的副本"""

    def __init__(self, configs: Iterable[Union[MonitorConfig, Dict[str, Any]]] = ()):
        self.configs: Dict[int, MonitorConfig] = {}
        for item in configs:
            if isinstance(item, MonitorConfig):
                self.put(item)
            else:
                for config in _parse_rows([item]):
                    self.put(config)

    def put(self, config: MonitorConfig) -> None:
        """新增或替换一条配置"""
        self.configs[config.id] = config

    def delete(self, config_id: int) -> bool:
        return self.configs.pop(config_id, None) is not None

    async def list_enabled_configs(self) -> List[MonitorConfig]:
        return [config for _, config in sorted(self.configs.items()) if config.enabled]

    async def get_config_by_id(self, config_id: int) -> Optional[MonitorConfig]:
        return self.configs.get(config_id)

    async def set_enabled(self, config_id: int, enabled: bool) -> bool:
        config = self.configs.get(config_id)
        if config is None:
            return False
        self.configs[config_id] = replace(config, enabled=enabled)
        return True
