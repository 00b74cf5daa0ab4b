"""
签名注册表与签名计算测试
"""

from evm_chain_monitor.utils.signature_registry import (
    DEX_METHOD_IDS, DEX_ROUTERS, ERC20_TRANSFER_TOPIC, SignatureCalculator, UNISWAP_V2_SWAP_TOPIC,
    is_swap_method, lookup_method, lookup_router,
)


class TestLookups:
    """方法与路由器查找"""

    def test_selector_lookup_is_deterministic(self):
        assert lookup_method('0x38ed1739') == 'swapExactTokensForTokens'
        assert lookup_method('0x38ed1739') == lookup_method('0x38ED1739')

    def test_colliding_selector_resolves_to_eth_output_swap(self):
        assert lookup_method('0x18cbafe5') == 'swapExactTokensForETH'
        assert lookup_method('0x5c11d795') == 'swapExactTokensForTokensSupportingFeeOnTransferTokens'

    def test_unknown_selector(self):
        assert lookup_method('0xdeadbeef') is None
        assert lookup_method('') is None
        assert lookup_method(None) is None

    def test_router_lookup_ignores_case(self):
        checksum = '0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D'
        assert lookup_router(checksum) == 'Uniswap V2'
        assert lookup_router(checksum.lower()) == 'Uniswap V2'
        assert lookup_router('0x10ED43C718714eb63d5aA57B78B54704E256024E') == 'PancakeSwap V2'
        assert lookup_router(None) is None

    def test_router_keys_are_lowercase(self):
        assert all(address == address.lower() for address in DEX_ROUTERS)

    def test_liquidity_methods_are_not_swaps(self):
        assert is_swap_method('exactInputSingle')
        assert not is_swap_method('addLiquidityETH')
        assert not is_swap_method(lookup_method('0xbaa2abde'))
        assert not is_swap_method(None)

    def test_selectors_are_four_bytes(self):
        assert all(len(method_id) == 10 and method_id.startswith('0x') for method_id in DEX_METHOD_IDS)


class TestSignatureCalculator:
    """Keccak 签名计算"""

    calculator = SignatureCalculator()

    def test_erc20_transfer_selector(self):
        assert self.calculator.method_id('transfer(address,uint256)') == '0xa9059cbb'

    def test_event_topics_match_registry(self):
        assert self.calculator.topic_hash('Transfer(address,address,uint256)') == ERC20_TRANSFER_TOPIC
        assert (self.calculator.topic_hash('Swap(address,uint256,uint256,uint256,uint256,address)')
                == UNISWAP_V2_SWAP_TOPIC)
        assert self.calculator.verify_topics() == []

    def test_router_selectors_match_signatures(self):
        signatures = {
            '0x38ed1739': 'swapExactTokensForTokens(uint256,uint256,address[],address,uint256)',
            '0x7ff36ab5': 'swapExactETHForTokens(uint256,address[],address,uint256)',
            '0x18cbafe5': 'swapExactTokensForETH(uint256,uint256,address[],address,uint256)',
            '0x5c11d795': 'swapExactTokensForTokensSupportingFeeOnTransferTokens('
                          'uint256,uint256,address[],address,uint256)',
        }
        assert self.calculator.verify_methods(signatures) == []

    def test_verify_reports_mismatches(self):
        assert self.calculator.verify_methods({'0x00000000': 'transfer(address,uint256)'}) == ['0x00000000']

    def test_build_signature(self):
        assert self.calculator.build_signature('approve', ['address', 'uint256']) == 'approve(address,uint256)'

    def test_empty_signature(self):
        assert self.calculator.method_id('') == ''
        assert self.calculator.topic_hash('') == ''
