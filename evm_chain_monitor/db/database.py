"""
数据库管理模块

负责数据库初始化、连接管理和异步会话
"""

from contextlib import asynccontextmanager
from typing import Optional, Dict, Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from evm_chain_monitor.core.exceptions import ConfigError
from evm_chain_monitor.models.chain_models import Base
from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """数据库管理器 - 负责数据库初始化和连接管理"""

    def __init__(self, db_config: Dict[str, Any]):
        """
        Args:
            db_config: config.yml 中的 database 段（见 AppConfig.get_database_config）
        """
        missing = [key for key in ('host', 'user', 'dbname') if not db_config.get(key)]
        if missing:
            raise ConfigError(f"数据库配置缺少字段: {', '.join(missing)}")

        self.db_config = db_config
        self.sync_engine = None
        self.async_engine = None
        self.async_session_factory: Optional[async_sessionmaker] = None

    def _get_database_url(self, async_mode: bool = False) -> URL:
        """构建数据库连接URL"""
        driver = "asyncpg" if async_mode else "psycopg2"
        query = {} if async_mode else {'sslmode': self.db_config.get('sslmode', 'disable')}

        return URL.create(
            f"postgresql+{driver}",
            username=self.db_config['user'],
            password=self.db_config.get('password') or None,
            host=self.db_config['host'],
            port=int(self.db_config.get('port', 5432)),
            database=self.db_config['dbname'],
            query=query,
        )

    async def initialize_database(self) -> bool:
        """初始化数据库，创建表结构"""
        try:
            logger.info("开始初始化数据库...")

            # 创建同步引擎用于创建表
            self.sync_engine = create_engine(self._get_database_url(async_mode=False), echo=False)
            Base.metadata.create_all(self.sync_engine)
            logger.info("数据库表结构创建完成")

            # asyncpg 不识别 sslmode 参数，通过 connect_args 传入
            sslmode = self.db_config.get('sslmode', 'disable')
            connect_args = {} if sslmode == 'disable' else {'ssl': sslmode}

            self.async_engine = create_async_engine(
                self._get_database_url(async_mode=True),
                echo=False,
                pool_size=int(self.db_config.get('pool_size', 10)),
                max_overflow=int(self.db_config.get('max_overflow', 20)),
                pool_pre_ping=True,
                pool_recycle=3600,
                connect_args=connect_args,
            )

            self.async_session_factory = async_sessionmaker(
                bind=self.async_engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            logger.info("数据库初始化完成")
            return True

        except Exception as e:
            logger.error(f"数据库初始化失败: {e}")
            return False

    @asynccontextmanager
    async def get_async_session(self):
        """获取异步数据库会话（上下文管理器），正常退出时提交，异常时回滚"""
        if not self.async_session_factory:
            raise RuntimeError("数据库未初始化，请先调用 initialize_database()")

        async with self.async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def test_connection(self) -> bool:
        """测试数据库连接"""
        try:
            async with self.get_async_session() as session:
                await session.execute(text("SELECT 1"))
            logger.info("数据库连接测试成功")
            return True
        except Exception as e:
            logger.error(f"数据库连接测试失败: {e}")
            return False

    async def close(self) -> None:
        """关闭数据库连接"""
        if self.async_engine:
            await self.async_engine.dispose()
            logger.info("异步数据库连接已关闭")

        if self.sync_engine:
            self.sync_engine.dispose()
            logger.info("同步数据库连接已关闭")
