"""
链数据模型

监听配置表 monitor_chain_config 以及区块、交易、转账、Swap 记录表
"""

from sqlalchemy import Column, Integer, BigInteger, String, Text, DateTime, DECIMAL, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from typing import Dict, Any

Base = declarative_base()

# uint256 最多 78 位十进制数
UINT256 = DECIMAL(78, 0)


class MonitorChainConfig(Base):
    """链监听配置"""

    __tablename__ = 'monitor_chain_config'

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain = Column(String(50), nullable=False)
    chain_id = Column(String(20))
    symbol = Column(String(20))
    rpc_http = Column(String(255))
    rpc_ws = Column(String(255))
    internal_rpc_http = Column(String(255))
    internal_rpc_ws = Column(String(255))
    interval = Column(Integer, default=3000)  # 轮询间隔（毫秒）
    full_tx = Column(Integer, default=1)
    enable = Column(Integer, default=1, index=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def to_config_dict(self) -> Dict[str, Any]:
        """转换为 MonitorConfig.from_dict 可接受的字典"""
        return {
            'id': self.id,
            'chain': self.chain,
            'chain_id': self.chain_id,
            'symbol': self.symbol,
            'rpc_http': self.rpc_http,
            'rpc_ws': self.rpc_ws,
            'internal_rpc_http': self.internal_rpc_http,
            'internal_rpc_ws': self.internal_rpc_ws,
            'interval': self.interval,
            'full_tx': self.full_tx,
            'enabled': self.enable,
        }

    def __repr__(self) -> str:
        return f"<MonitorChainConfig(id={self.id}, chain='{self.chain}', enable={self.enable})>"


class BlockRecord(Base):
    """区块摘要"""

    __tablename__ = 'blocks'
    __table_args__ = (
        UniqueConstraint('chain', 'hash', name='uq_blocks_chain_hash'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain = Column(String(50), nullable=False, index=True)
    number = Column(BigInteger, nullable=False, index=True)
    hash = Column(String(66), nullable=False)
    parent_hash = Column(String(66))
    timestamp = Column(BigInteger)
    tx_count = Column(Integer, default=0)
    native_transfers = Column(Integer, default=0)
    token_transfers = Column(Integer, default=0)
    swaps = Column(Integer, default=0)
    contract_creations = Column(Integer, default=0)
    failed = Column(Integer, default=0)
    gas_used = Column(BigInteger)
    gas_limit = Column(BigInteger)
    size = Column(Integer)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return f"<BlockRecord(chain='{self.chain}', number={self.number}, tx_count={self.tx_count})>"


class TransactionRecord(Base):
    """交易记录"""

    __tablename__ = 'transactions'
    __table_args__ = (
        UniqueConstraint('chain', 'hash', name='uq_transactions_chain_hash'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain = Column(String(50), nullable=False, index=True)
    hash = Column(String(66), nullable=False, index=True)
    block_number = Column(BigInteger, index=True)
    tx_index = Column(Integer)
    from_address = Column(String(42), index=True)
    to_address = Column(String(42), index=True)  # 空表示合约创建
    value = Column(UINT256)
    gas = Column(BigInteger)
    gas_price = Column(UINT256)
    gas_used = Column(BigInteger)
    nonce = Column(BigInteger)
    method_id = Column(String(10))
    status = Column(Integer)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return f"<TransactionRecord(chain='{self.chain}', hash='{self.hash[:10]}...', status={self.status})>"


class TransferRecord(Base):
    """转账记录（原生币转账 log_index 为 -1）"""

    __tablename__ = 'transfers'
    __table_args__ = (
        UniqueConstraint('chain', 'tx_hash', 'log_index', name='uq_transfers_chain_tx_log'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain = Column(String(50), nullable=False, index=True)
    tx_hash = Column(String(66), nullable=False, index=True)
    block_number = Column(BigInteger, index=True)
    tx_index = Column(Integer)
    log_index = Column(Integer, nullable=False)
    from_address = Column(String(42), index=True)
    to_address = Column(String(42), index=True)
    value = Column(UINT256)
    token = Column(String(10))  # native / erc20
    token_address = Column(String(42), index=True)
    transfer_type = Column(String(10))  # transfer / mint / burn
    created_at = Column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return (f"<TransferRecord(chain='{self.chain}', tx_hash='{self.tx_hash[:10]}...', "
                f"type='{self.transfer_type}', value={self.value})>")


class SwapRecord(Base):
    """Swap 记录"""

    __tablename__ = 'swaps'
    __table_args__ = (
        UniqueConstraint('chain', 'tx_hash', 'log_index', name='uq_swaps_chain_tx_log'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain = Column(String(50), nullable=False, index=True)
    tx_hash = Column(String(66), nullable=False, index=True)
    block_number = Column(BigInteger, index=True)
    tx_index = Column(Integer)
    log_index = Column(Integer, nullable=False)
    sender = Column(String(42))
    to_address = Column(String(42))
    pair_address = Column(String(42), index=True)
    in_token = Column(String(10))  # token0 / token1
    out_token = Column(String(10))
    in_amount = Column(UINT256)
    out_amount = Column(UINT256)
    router = Column(String(50))
    method = Column(String(80))
    detected_by = Column(String(10))  # methodId / logs
    created_at = Column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return (f"<SwapRecord(chain='{self.chain}', tx_hash='{self.tx_hash[:10]}...', "
                f"router='{self.router}', method='{self.method}')>")
