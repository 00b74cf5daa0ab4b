"""
RabbitMQ 事件发布

把区块、交易、转账、Swap 记录以 JSON 消息发布到交换机，路由键为 <chain>.<kind>
"""

import json
from typing import Any, Dict, List, Optional

import aio_pika
from aio_pika import ExchangeType

from evm_chain_monitor.utils.log_utils import get_logger

logger = get_logger(__name__)


class RabbitMQPersistence:
    """
    基于 RabbitMQ 的持久化实现

    与数据库持久化一样是尽力而为：未连接或发送失败时记录日志并返回 False
    """

    def __init__(
        self,
        host: str = 'localhost',
        port: int = 5672,
        username: str = 'guest',
        password: str = 'guest',
        virtual_host: str = '/',
        exchange_name: str = 'chain_events',
        exchange_type: str = 'topic',
        heartbeat: int = 600,
        connection_timeout: int = 30,
        **_: Any,
    ):
        """
        Args:
            host: RabbitMQ 服务器地址
            port: RabbitMQ 端口
            username: 用户名
            password: 密码
            virtual_host: 虚拟主机
            exchange_name: 交换机名称
            exchange_type: 交换机类型
            heartbeat: 心跳间隔（秒）
            connection_timeout: 连接超时（秒）
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.virtual_host = virtual_host
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type
        self.heartbeat = heartbeat
        self.connection_timeout = connection_timeout

        self.connection = None
        self.channel = None
        self.exchange = None
        self._is_connected = False
        self.published: int = 0

    @classmethod
    def from_config(cls, rabbitmq_config: Dict[str, Any]) -> 'RabbitMQPersistence':
        return cls(**{key: value for key, value in rabbitmq_config.items() if key != 'enabled'})

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self) -> bool:
        """连接到 RabbitMQ 并声明交换机"""
        try:
            virtual_host = self.virtual_host if self.virtual_host.startswith('/') else f"/{self.virtual_host}"
            connection_url = (
                f"amqp://{self.username}:{self.password}@"
                f"{self.host}:{self.port}{virtual_host}"
            )

            logger.info(f"🔌 正在连接到 RabbitMQ: {self.host}:{self.port}")
            self.connection = await aio_pika.connect_robust(
                connection_url,
                heartbeat=self.heartbeat,
                timeout=self.connection_timeout
            )

            self.channel = await self.connection.channel()

            exchange_type_enum = getattr(ExchangeType, self.exchange_type.upper())
            self.exchange = await self.channel.declare_exchange(
                self.exchange_name,
                exchange_type_enum,
                durable=True
            )

            self._is_connected = True
            logger.info(f"✅ 成功连接到 RabbitMQ: {self.host}:{self.port}")
            logger.info(f"🔄 交换机: {self.exchange_name} ({self.exchange_type})")
            return True

        except Exception as e:
            logger.error(f"❌ 连接到 RabbitMQ 失败: {e}")
            self._is_connected = False
            return False

    @staticmethod
    def routing_key(chain: Optional[str], kind: str) -> str:
        return f"{(chain or 'unknown').lower()}.{kind}"

    async def publish(self, kind: str, record: Dict[str, Any]) -> bool:
        """发布单条记录"""
        if not self._is_connected or self.exchange is None:
            logger.debug(f"RabbitMQ 未连接，丢弃 {kind} 消息")
            return False

        routing_key = self.routing_key(record.get('chain'), kind)
        try:
            message_body = json.dumps({'kind': kind, 'data': record}, ensure_ascii=False, default=str)
            await self.exchange.publish(
                aio_pika.Message(
                    message_body.encode('utf-8'),
                    content_type='application/json',
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                ),
                routing_key=routing_key
            )
            self.published += 1
            return True
        except Exception as e:
            logger.error(f"❌ 发送消息失败 ({routing_key}): {e}")
            return False

    async def _publish_many(self, kind: str, records: List[Dict[str, Any]]) -> bool:
        ok = True
        for record in records:
            ok = await self.publish(kind, record) and ok
        return ok

    async def save_block(self, summary: Dict[str, Any]) -> bool:
        return await self.publish('block', summary)

    async def save_transaction(self, record: Dict[str, Any]) -> bool:
        return await self.publish('transaction', record)

    async def save_transfers_batch(self, records: List[Dict[str, Any]]) -> bool:
        return await self._publish_many('transfer', records)

    async def save_swaps_batch(self, records: List[Dict[str, Any]]) -> bool:
        return await self._publish_many('swap', records)

    async def close(self) -> None:
        """关闭连接"""
        if self.connection and not self.connection.is_closed:
            await self.connection.close()
            logger.info("🔌 RabbitMQ 连接已关闭")
        self._is_connected = False
