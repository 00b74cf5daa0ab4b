"""
多链监听器管理

按配置 id 管理 ChainMonitor 的增删、启停，并根据配置存储的变化刷新监听器
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from evm_chain_monitor.config.monitor_config import MonitorConfig, MonitorSettings
from evm_chain_monitor.core.chain_monitor import ChainMonitor
from evm_chain_monitor.processors.transaction_parser import TransactionParser
from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class MonitorRegistry:
    """多链监听器管理器"""

    def __init__(
        self,
        config_store,
        persistence=None,
        settings: Optional[MonitorSettings] = None,
        monitor_factory: Optional[Callable[[MonitorConfig], ChainMonitor]] = None,
    ):
        """
        Args:
            config_store: 配置存储（list_enabled_configs / get_config_by_id / set_enabled）
            persistence: 所有监听器共享的持久化网关
            settings: 监控调优参数
            monitor_factory: 根据配置创建监听器，默认创建 ChainMonitor
        """
        self.config_store = config_store
        self.persistence = persistence
        self.settings = settings or MonitorSettings()
        self.parser = TransactionParser(self.settings)
        self.monitor_factory = monitor_factory or self._create_monitor

        self.monitors: Dict[int, ChainMonitor] = {}
        self.configs: Dict[int, MonitorConfig] = {}

    def _create_monitor(self, config: MonitorConfig) -> ChainMonitor:
        return ChainMonitor(config, self.persistence, parser=self.parser, settings=self.settings)

    async def init(self) -> int:
        """
        加载所有启用的配置并启动监听器

        Returns:
            成功启动的监听器数量
        """
        logger.info("🚀 初始化多链监听器...")
        configs = await self.config_store.list_enabled_configs()
        logger.info(f"📋 找到 {len(configs)} 个启用的链配置")

        for config in configs:
            try:
                await self.add_monitor(config)
            except Exception as e:
                logger.error(f"❌ 链监听器 {config.chain} (ID: {config.id}) 启动失败: {e}")

        logger.info(f"✅ 多链监听器初始化完成，运行中: {len(self.monitors)} 个")
        return len(self.monitors)

    async def add_monitor(self, config: MonitorConfig) -> bool:
        """
        添加并启动监听器

        Returns:
            是否新增了监听器，id 已存在时返回 False

        Raises:
            初始化或启动失败时抛出原始异常，管理器状态不变
        """
        if config.id in self.monitors:
            logger.warning(f"⚠️ 监听器已存在: {config.chain} (ID: {config.id})")
            return False

        monitor = self.monitor_factory(config)
        try:
            await monitor.init()
            await monitor.start()
        except Exception:
            try:
                await monitor.close()
            except Exception as close_error:
                logger.warning(f"{config.chain} 释放未启动的监听器失败: {close_error}")
            raise

        self.monitors[config.id] = monitor
        self.configs[config.id] = config
        logger.info(f"✅ 监听器已添加: {config.chain} (ID: {config.id})")
        return True

    async def remove_monitor(self, config_id: int) -> bool:
        """停止并移除监听器"""
        monitor = self.monitors.pop(config_id, None)
        config = self.configs.pop(config_id, None)
        if monitor is None:
            return False

        await monitor.close()
        logger.info(f"🗑️ 监听器已移除: {config.chain if config else monitor.chain} (ID: {config_id})")
        return True

    async def enable_monitor(self, config_id: int) -> bool:
        """启用配置并启动对应的监听器"""
        if not await self._set_enabled(config_id, True):
            return False

        if config_id not in self.monitors:
            config = await self.config_store.get_config_by_id(config_id)
            # 状态已写入，读不到有效配置时只记录，等下一次刷新
            if config is None:
                logger.warning(f"⚠️ 已启用但读取配置失败，暂不启动: ID {config_id}")
                return True

            try:
                await self.add_monitor(config)
            except Exception as e:
                logger.error(f"❌ 启用监听器失败 (ID: {config_id}): {e}")
                return False

        logger.info(f"✅ 启用监听器成功: ID {config_id}")
        return True

    async def disable_monitor(self, config_id: int) -> bool:
        """禁用配置并停止对应的监听器"""
        if not await self._set_enabled(config_id, False):
            return False

        await self.remove_monitor(config_id)
        return True

    async def _set_enabled(self, config_id: int, enabled: bool) -> bool:
        try:
            updated = await self.config_store.set_enabled(config_id, enabled)
        except Exception as e:
            logger.error(f"❌ 更新配置状态失败 (ID: {config_id}): {e}")
            return False
        if not updated:
            logger.error(f"❌ 更新配置状态失败 (ID: {config_id})")
        return bool(updated)

    async def refresh_configs(self) -> Dict[str, int]:
        """
        重新加载配置并同步监听器

        Returns:
            {'added': 新增数, 'removed': 移除数, 'updated': 更新数}
        """
        logger.info("🔄 刷新监听配置...")
        new_configs = {config.id: config for config in await self.config_store.list_enabled_configs()}

        added = removed = updated = 0

        # 已不再启用的配置
        for config_id in [cid for cid in self.monitors if cid not in new_configs]:
            if await self.remove_monitor(config_id):
                removed += 1

        for config_id, config in new_configs.items():
            current = self.configs.get(config_id)

            if config_id not in self.monitors:
                try:
                    if await self.add_monitor(config):
                        added += 1
                except Exception as e:
                    logger.error(f"❌ 添加监听器失败 {config.chain} (ID: {config_id}): {e}")
                continue

            changed = current.changed_fields(config) if current else ()
            if not changed:
                continue

            logger.info(f"♻️ 配置变更 {config.chain} (ID: {config_id}): {', '.join(changed)}")
            await self.remove_monitor(config_id)
            try:
                await self.add_monitor(config)
                updated += 1
            except Exception as e:
                logger.error(f"❌ 重建监听器失败 {config.chain} (ID: {config_id}): {e}")

        result = {'added': added, 'removed': removed, 'updated': updated}
        logger.info(f"✅ 配置刷新完成: {result}")
        return result

    def get_all_status(self) -> List[Dict[str, Any]]:
        """获取所有监听器的状态"""
        return [monitor.get_status().to_dict() for monitor in self.monitors.values()]

    def get_monitor_status(self, config_id: int) -> Optional[Dict[str, Any]]:
        monitor = self.monitors.get(config_id)
        if monitor is None:
            return None
        return monitor.get_status().to_dict()

    async def shutdown(self) -> None:
        """并发停止所有监听器"""
        if not self.monitors:
            return

        logger.info("🛑 正在停止所有链监听器...")
        monitors = list(self.monitors.values())
        self.monitors.clear()
        self.configs.clear()

        results = await asyncio.gather(*(monitor.close() for monitor in monitors), return_exceptions=True)
        for monitor, result in zip(monitors, results):
            if isinstance(result, Exception):
                logger.error(f"❌ 停止监听器 {monitor.chain} 时出错: {result}")

        logger.info("✅ 所有链监听器已停止")
