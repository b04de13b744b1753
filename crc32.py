import zlib


def crc32(data: bytes, crc: int = 0) -> int:
    """CRC-32 (IEEE 802.3) of `data`, continuing from `crc`"""
    return zlib.crc32(data, crc) & 0xFFFFFFFF
