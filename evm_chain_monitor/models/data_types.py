"""
监控数据类型定义

定义区块、交易、转账、Swap 以及监控状态等数据结构
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Any, Optional, List, Set, Tuple, Mapping

from evm_chain_monitor.utils.hex_utils import to_hex_str, to_int, normalize_address


class DeliveryMode(Enum):
    """区块获取方式"""
    PUSH = "push"  # WebSocket 订阅
    PULL = "pull"  # HTTP 轮询


class MonitorState(Enum):
    """监听器生命周期状态"""
    STOPPED = "stopped"
    INITIALIZING = "initializing"
    RUNNING = "running"


class TokenKind(Enum):
    NATIVE = "native"
    ERC20 = "erc20"


class TransferType(Enum):
    TRANSFER = "transfer"
    MINT = "mint"
    BURN = "burn"


class DetectionSource(Enum):
    """Swap 的识别来源"""
    METHOD_ID = "methodId"
    LOG_HEURISTIC = "logs"


def extract_method_id(input_data: Any) -> str:
    """取 input 前 4 字节作为 methodId，长度不足时返回空字符串"""
    hex_input = to_hex_str(input_data)
    if len(hex_input) < 10:
        return ''
    return hex_input[:10]


@dataclass(frozen=True)
class Transaction:
    """交易数据类 - 创建后不再修改"""
    hash: str
    sender: str
    to: Optional[str]  # None 表示合约创建
    value: int = 0
    gas: int = 0
    gas_price: int = 0
    nonce: int = 0
    tx_index: Optional[int] = None
    input: str = '0x'
    block_number: Optional[int] = None

    @property
    def method_id(self) -> str:
        return extract_method_id(self.input)

    @property
    def is_contract_creation(self) -> bool:
        return self.to is None

    @classmethod
    def from_web3(cls, tx: Mapping[str, Any]) -> 'Transaction':
        """从 web3 返回的交易对象创建"""
        tx_index = tx.get('transactionIndex')
        block_number = tx.get('blockNumber')
        return cls(
            hash=to_hex_str(tx['hash']),
            sender=normalize_address(tx.get('from')) or '',
            to=normalize_address(tx.get('to')),
            value=to_int(tx.get('value')),
            gas=to_int(tx.get('gas')),
            gas_price=to_int(tx.get('gasPrice')),
            nonce=to_int(tx.get('nonce')),
            tx_index=to_int(tx_index) if tx_index is not None else None,
            input=to_hex_str(tx.get('input', tx.get('data'))),
            block_number=to_int(block_number) if block_number is not None else None,
        )

    def __str__(self) -> str:
        return f"Transaction(hash={self.hash[:10]}..., to={self.to}, value={self.value})"


@dataclass(frozen=True)
class Block:
    """区块数据类"""
    chain: str
    number: int
    hash: str
    parent_hash: str
    timestamp: int = 0
    gas_used: int = 0
    gas_limit: int = 0
    size: int = 0
    transactions: Tuple[Transaction, ...] = ()
    transaction_hashes: Tuple[str, ...] = ()

    @property
    def tx_count(self) -> int:
        return len(self.transaction_hashes)

    @property
    def has_full_transactions(self) -> bool:
        return len(self.transactions) == len(self.transaction_hashes)

    @classmethod
    def from_web3(cls, chain: str, block: Mapping[str, Any]) -> 'Block':
        """从 web3 返回的区块创建；交易可能是完整对象，也可能只有哈希"""
        transactions = []
        hashes = []
        for item in block.get('transactions') or []:
            if isinstance(item, Mapping):
                tx = Transaction.from_web3(item)
                transactions.append(tx)
                hashes.append(tx.hash)
            else:
                hashes.append(to_hex_str(item))

        return cls(
            chain=chain,
            number=to_int(block.get('number')),
            hash=to_hex_str(block.get('hash')),
            parent_hash=to_hex_str(block.get('parentHash')),
            timestamp=to_int(block.get('timestamp')),
            gas_used=to_int(block.get('gasUsed')),
            gas_limit=to_int(block.get('gasLimit')),
            size=to_int(block.get('size')),
            transactions=tuple(transactions),
            transaction_hashes=tuple(hashes),
        )


@dataclass(frozen=True)
class Transfer:
    """转账记录（原生币或 ERC20，包括 mint/burn）"""
    sender: str
    to: Optional[str]
    value: str
    token_kind: TokenKind
    token_address: Optional[str]
    transfer_type: TransferType
    tx_index: Optional[int]
    log_index: int  # 原生币转账为 -1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'from': self.sender,
            'to': self.to,
            'value': self.value,
            'token': self.token_kind.value,
            'token_address': self.token_address,
            'type': self.transfer_type.value,
            'tx_index': self.tx_index,
            'log_index': self.log_index,
        }


@dataclass(frozen=True)
class Swap:
    """Swap 记录（Uniswap V2 风格的 Swap 事件）"""
    sender: str
    recipient: str
    pair_address: str
    in_slot: str
    out_slot: str
    in_amount: str
    out_amount: str
    router: str
    method: str
    detection_source: DetectionSource
    tx_index: Optional[int]
    log_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sender': self.sender,
            'to': self.recipient,
            'pair': self.pair_address,
            'in_token': self.in_slot,
            'out_token': self.out_slot,
            'in_amount': self.in_amount,
            'out_amount': self.out_amount,
            'router': self.router,
            'method': self.method,
            'detected_by': self.detection_source.value,
            'tx_index': self.tx_index,
            'log_index': self.log_index,
        }


@dataclass(frozen=True)
class SwapTag:
    """交易级别的 DEX 识别结果"""
    router: str
    method: str
    router_address: str
    is_swap_method: bool
    detection_source: DetectionSource


@dataclass
class ParsedTransaction:
    """单笔交易的解析结果"""
    tx: Transaction
    chain: str
    status: int = 0
    gas_used: int = 0
    receipt_found: bool = False
    receipt_block_number: Optional[int] = None
    transfers: List[Transfer] = field(default_factory=list)
    swaps: List[Swap] = field(default_factory=list)
    tokens: Set[str] = field(default_factory=set)
    swap_tag: Optional[SwapTag] = None
    failed: bool = False
    error: Optional[str] = None
    connection_error: bool = False

    @property
    def hash(self) -> str:
        return self.tx.hash

    @property
    def block_number(self) -> int:
        if self.receipt_block_number is not None:
            return self.receipt_block_number
        return self.tx.block_number or 0

    def is_native_transfer(self) -> bool:
        return any(t.token_kind is TokenKind.NATIVE for t in self.transfers)

    def is_token_transfer(self) -> bool:
        return any(t.token_kind is TokenKind.ERC20 for t in self.transfers)

    def is_swap(self) -> bool:
        return len(self.swaps) > 0

    def summary(self) -> Dict[str, Any]:
        """解析结果摘要"""
        return {
            'hash': self.tx.hash,
            'chain': self.chain,
            'from': self.tx.sender,
            'to': self.tx.to,
            'value': str(self.tx.value),
            'gas_used': self.gas_used,
            'status': self.status,
            'transfers_count': len(self.transfers),
            'swaps_count': len(self.swaps),
            'tokens_count': len(self.tokens),
            'method_id': self.tx.method_id,
            'swap_method': self.swap_tag.method if self.swap_tag else None,
            'router': self.swap_tag.router if self.swap_tag else None,
            'detected_by': (self.swap_tag.detection_source.value if self.swap_tag
                            else DetectionSource.METHOD_ID.value),
        }


@dataclass
class TxOutcome:
    """批处理中单笔交易的结算结果"""
    tx: Transaction
    parsed: Optional[ParsedTransaction] = None
    error: Optional[BaseException] = None
    connection_error: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.parsed is not None and not self.parsed.failed


@dataclass
class BlockStats:
    """单个区块的处理统计"""
    total: int = 0
    native_transfers: int = 0
    token_transfers: int = 0
    swaps: int = 0
    contract_creations: int = 0
    failed: int = 0
    attempted: int = 0
    connection_errors: int = 0
    aborted: bool = False
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MonitorStatus:
    """监听器状态快照"""
    chain: str
    chain_id: Optional[str]
    symbol: Optional[str]
    is_running: bool
    current_block_height: int
    rpc_url: Optional[str]
    connection_healthy: bool
    config_id: Optional[int] = None
    delivery_mode: Optional[str] = None
    blocks_processed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
