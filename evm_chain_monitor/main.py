#!/usr/bin/env python3
"""
EVM多链区块监听服务

程序入口点：加载配置、初始化存储和持久化、启动所有链的监听器和控制接口
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional, Tuple

from evm_chain_monitor.config.base_config import AppConfig
from evm_chain_monitor.config.monitor_config import MonitorSettings
from evm_chain_monitor.core.monitor_registry import MonitorRegistry
from evm_chain_monitor.db.config_store import DatabaseConfigStore, StaticConfigStore
from evm_chain_monitor.db.database import DatabaseManager
from evm_chain_monitor.db.persistence import CompositePersistence, DatabasePersistence, LoggingPersistence
from evm_chain_monitor.services.control_api import start_api_server
from evm_chain_monitor.services.rabbitmq_publisher import RabbitMQPersistence
from evm_chain_monitor.utils.log_utils import configure_logging, get_logger

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='EVM多链区块监听服务')
    parser.add_argument('--config', help='配置文件路径（默认 config.yml 或 EVM_MONITOR_CONFIG）')
    parser.add_argument('--no-api', action='store_true', help='不启动HTTP控制接口')
    return parser.parse_args(argv)


async def build_components(app_config: AppConfig) -> Tuple[object, CompositePersistence, Optional[DatabaseManager]]:
    """根据配置创建配置存储和持久化网关"""
    sinks = [LoggingPersistence()]
    db_manager = None

    db_config = app_config.get_database_config()
    if db_config['enabled']:
        db_manager = DatabaseManager(db_config)
        if not await db_manager.initialize_database():
            raise RuntimeError("数据库初始化失败")
        config_store = DatabaseConfigStore(db_manager)
        sinks.append(DatabasePersistence(db_manager))
        logger.info("📦 使用数据库配置存储")
    else:
        config_store = StaticConfigStore(app_config.get_chain_configs())
        logger.info(f"📄 使用静态链配置，共 {len(config_store.configs)} 条")

    rabbitmq_config = app_config.get_rabbitmq_config()
    if rabbitmq_config['enabled']:
        publisher = RabbitMQPersistence.from_config(rabbitmq_config)
        if await publisher.connect():
            sinks.append(publisher)
        else:
            logger.warning("⚠️ RabbitMQ 连接失败，事件不会发布")

    return config_store, CompositePersistence(sinks), db_manager


def setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """设置信号处理器"""
    loop = asyncio.get_running_loop()

    def signal_handler(signum, frame):
        """信号处理器"""
        logger.info(f"接收到信号 {signum}，开始优雅退出...")
        loop.call_soon_threadsafe(stop_event.set)

    # 注册信号处理器
    try:
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
        logger.info("信号处理器已注册")
    except Exception as e:
        logger.warning(f"注册信号处理器失败: {e}")


async def main(argv: Optional[List[str]] = None) -> int:
    """主函数 - 启动多链监听服务"""
    args = parse_args(argv)
    app_config = AppConfig.load(args.config)

    logging_config = app_config.get_logging_config()
    configure_logging(logging_config['level'], logging_config['file'])

    registry = None
    persistence = None
    runner = None

    try:
        settings = MonitorSettings.from_dict(app_config.get_monitor_config())
        config_store, persistence, _ = await build_components(app_config)

        registry = MonitorRegistry(config_store, persistence, settings)
        await registry.init()

        api_config = app_config.get_api_config()
        if api_config['enabled'] and not args.no_api:
            runner = await start_api_server(registry, api_config['host'], api_config['port'])

        stop_event = asyncio.Event()
        setup_signal_handlers(stop_event)
        logger.info("🚀 EVM区块监听服务已启动")
        await stop_event.wait()

    except KeyboardInterrupt:
        logger.info("接收到键盘中断")
    except Exception as e:
        logger.error(f"监听服务运行失败: {e}", exc_info=True)
        return 1
    finally:
        if runner is not None:
            await runner.cleanup()
        if registry is not None:
            await registry.shutdown()
        if persistence is not None:
            await persistence.close()
        logger.info("👋 EVM区块监听服务已退出")

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
