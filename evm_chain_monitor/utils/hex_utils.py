"""
十六进制与地址处理工具

web3 返回的字段可能是 HexBytes、bytes、十六进制字符串或整数，这里统一转换
"""

from typing import Any, Optional

ZERO_ADDRESS = '0x' + '0' * 40


def to_hex_str(value: Any) -> str:
    """转换为带 0x 前缀的小写十六进制字符串，空值返回 '0x'"""
    if value is None:
        return '0x'
    if isinstance(value, (bytes, bytearray, memoryview)):
        return '0x' + bytes(value).hex()
    if isinstance(value, int):
        return hex(value)
    text = str(value).strip().lower()
    if not text.startswith('0x'):
        text = '0x' + text
    return text


def to_int(value: Any, default: int = 0) -> int:
    """把整数、十六进制字符串或 bytes 转换为整数"""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return int.from_bytes(bytes(value), 'big') if len(value) else default
    text = str(value).strip()
    if not text:
        return default
    if text.lower().startswith('0x'):
        return int(text, 16) if len(text) > 2 else default
    return int(text)


def normalize_address(value: Any) -> Optional[str]:
    """地址统一为小写，空值返回 None"""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return to_hex_str(value)
    text = str(value).strip()
    return text.lower() if text else None


def topic_to_address(topic: Any) -> str:
    """取 32 字节 topic 的低 20 字节作为地址（右对齐）"""
    hex_topic = to_hex_str(topic)[2:]
    if len(hex_topic) < 40:
        raise ValueError(f"topic 长度不足以包含地址: {to_hex_str(topic)}")
    return '0x' + hex_topic[-40:]


def split_words(data: Any, count: int) -> list:
    """把 data 按 32 字节切分并解析为 count 个无符号整数"""
    hex_data = to_hex_str(data)[2:]
    if len(hex_data) < count * 64:
        raise ValueError(f"data 长度不足: 需要 {count * 64} 个十六进制字符，实际 {len(hex_data)}")
    return [int(hex_data[i * 64:(i + 1) * 64], 16) for i in range(count)]
