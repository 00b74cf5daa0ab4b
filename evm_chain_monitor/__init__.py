"""EVM 多链区块监听服务"""

__version__ = "1.0.0"
