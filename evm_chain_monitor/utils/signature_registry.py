"""
签名注册表

不依赖 ABI，只通过已知的 4 字节方法签名和 32 字节事件 topic 识别交易类型
"""

from typing import Dict, Optional, Iterable, List

from web3 import Web3

# ERC20 Transfer(address indexed from, address indexed to, uint256 value)
ERC20_TRANSFER_TOPIC = '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'

# Uniswap V2 Swap(address indexed sender, uint amount0In, uint amount1In, uint amount0Out, uint amount1Out, address indexed to)
UNISWAP_V2_SWAP_TOPIC = '0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822'

EVENT_SIGNATURES: Dict[str, str] = {
    ERC20_TRANSFER_TOPIC: 'Transfer(address,address,uint256)',
    UNISWAP_V2_SWAP_TOPIC: 'Swap(address,uint256,uint256,uint256,uint256,address)',
}

# 常见的 DEX 路由器地址（小写）
DEX_ROUTERS: Dict[str, str] = {
    '0x7a250d5630b4cf539739df2c5dacb4c659f2488d': 'Uniswap V2',
    '0xe592427a0aece92de3edee1f18e0157c05861564': 'Uniswap V3',
    '0x10ed43c718714eb63d5aa57b78b54704e256024e': 'PancakeSwap V2',
}

# DEX 常见方法 ID
# 0x18cbafe5 是 swapExactTokensForETH 的真实选择器，
# 手续费代币版本的 token->token 方法使用它自己的选择器 0x5c11d795
DEX_METHOD_IDS: Dict[str, str] = {
    # Uniswap V2 / PancakeSwap V2 Router
    '0x38ed1739': 'swapExactTokensForTokens',
    '0x8803dbee': 'swapTokensForExactTokens',
    '0x7ff36ab5': 'swapExactETHForTokens',
    '0x4a25d94a': 'swapTokensForExactETH',
    '0x18cbafe5': 'swapExactTokensForETH',
    '0xfb3bdb41': 'swapETHForExactTokens',
    '0x5c11d795': 'swapExactTokensForTokensSupportingFeeOnTransferTokens',
    '0xb6f9de95': 'swapExactETHForTokensSupportingFeeOnTransferTokens',
    '0x791ac947': 'swapExactTokensForETHSupportingFeeOnTransferTokens',

    # Uniswap V3 Router
    '0x414bf389': 'exactInputSingle',
    '0xc04b8d59': 'exactInput',
    '0xdb3e2198': 'exactOutputSingle',
    '0x09b81346': 'exactOutput',

    # 添加流动性
    '0xe8e33700': 'addLiquidity',
    '0xf305d719': 'addLiquidityETH',

    # 移除流动性
    '0xbaa2abde': 'removeLiquidity',
    '0x02751cec': 'removeLiquidityETH',
}

SWAP_METHODS = frozenset({
    'swapExactTokensForTokens',
    'swapTokensForExactTokens',
    'swapExactETHForTokens',
    'swapTokensForExactETH',
    'swapExactTokensForETH',
    'swapETHForExactTokens',
    'swapExactTokensForTokensSupportingFeeOnTransferTokens',
    'swapExactETHForTokensSupportingFeeOnTransferTokens',
    'swapExactTokensForETHSupportingFeeOnTransferTokens',
    'exactInputSingle',
    'exactInput',
    'exactOutputSingle',
    'exactOutput',
})


def lookup_router(address: Optional[str]) -> Optional[str]:
    """根据地址查找路由器名称，大小写不敏感"""
    if not address:
        return None
    return DEX_ROUTERS.get(address.lower())


def lookup_method(method_id: Optional[str]) -> Optional[str]:
    """根据 methodId 查找方法名"""
    if not method_id:
        return None
    return DEX_METHOD_IDS.get(method_id.lower())


def is_swap_method(method_name: Optional[str]) -> bool:
    return method_name in SWAP_METHODS


class SignatureCalculator:
    """通过 Keccak-256 计算方法选择器和事件 topic"""

    @staticmethod
    def method_id(signature: str) -> str:
        """计算函数签名的 4 字节选择器，如 transfer(address,uint256) -> 0xa9059cbb"""
        if not signature:
            return ''
        return '0x' + Web3.keccak(text=signature).hex().removeprefix('0x')[:8]

    @staticmethod
    def topic_hash(signature: str) -> str:
        """计算事件签名的 32 字节 topic"""
        if not signature:
            return ''
        return '0x' + Web3.keccak(text=signature).hex().removeprefix('0x')

    @staticmethod
    def build_signature(name: str, input_types: Iterable[str]) -> str:
        return f"{name}({','.join(input_types)})"

    def verify_topics(self, registry: Optional[Dict[str, str]] = None) -> List[str]:
        """返回与签名计算结果不一致的 topic 列表"""
        registry = registry if registry is not None else EVENT_SIGNATURES
        return [topic for topic, signature in registry.items()
                if self.topic_hash(signature) != topic]

    def verify_methods(self, signatures: Dict[str, str]) -> List[str]:
        """
        校验方法签名表

        Args:
            signatures: methodId -> 完整函数签名

        Returns:
            不一致的 methodId 列表
        """
        return [method_id for method_id, signature in signatures.items()
                if self.method_id(signature) != method_id]
