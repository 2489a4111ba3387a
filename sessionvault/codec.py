from __future__ import annotations

from typing import Optional

from .constants import CODEC_NONE, CODEC_ZSTD, CODEC_DEFLATE, CODEC_NAMES, DEFAULT_DEFLATE_LEVEL
from .errors import CompressionNotSupported

import zlib

_HAS_ZSTD = False
_zstd_mod = None
_ZstdError = RuntimeError
try:  # zstd is an optional extra; deflate is always available
    import zstandard as _zstd_mod  # type: ignore
    from zstandard import ZstdError as _ZstdError  # type: ignore
    _HAS_ZSTD = True
except ImportError:
    _zstd_mod = None
    _HAS_ZSTD = False


def codec_available(codec_id: int) -> bool:
    if codec_id == CODEC_ZSTD:
        return _HAS_ZSTD
    return codec_id in (CODEC_NONE, CODEC_DEFLATE)


def codec_id_from_name(name: str) -> int:
    for cid, cname in CODEC_NAMES.items():
        if cname == name.lower():
            return cid
    raise ValueError(f"unknown codec: {name}")


class Codec:
    def __init__(self, codec_id: int, level: Optional[int] = None):
        self.codec_id = codec_id
        self.level = level

    @property
    def name(self) -> str:
        return CODEC_NAMES.get(self.codec_id, f"codec-{self.codec_id}")

    def compress(self, data: bytes) -> bytes:
        if self.codec_id == CODEC_NONE:
            return data
        if self.codec_id == CODEC_DEFLATE:
            return zlib.compress(data, self.level if self.level is not None else DEFAULT_DEFLATE_LEVEL)
        if self.codec_id == CODEC_ZSTD:
            if not (_HAS_ZSTD and _zstd_mod is not None):
                raise CompressionNotSupported("zstd codec selected but zstandard is not installed")
            try:
                c = _zstd_mod.ZstdCompressor(level=self.level if self.level is not None else 19)
                return c.compress(data)
            except _ZstdError as e:
                raise CompressionNotSupported(f"zstd compression failed: {e}")
        raise CompressionNotSupported(f"unsupported codec id: {self.codec_id}")

    def decompress(self, data: bytes) -> bytes:
        if self.codec_id == CODEC_NONE:
            return data
        if self.codec_id == CODEC_DEFLATE:
            try:
                return zlib.decompress(data)
            except zlib.error as e:
                raise CompressionNotSupported(f"deflate decompression failed: {e}")
        if self.codec_id == CODEC_ZSTD:
            if not (_HAS_ZSTD and _zstd_mod is not None):
                raise CompressionNotSupported("bundle is zstd-compressed but zstandard is not installed")
            try:
                d = _zstd_mod.ZstdDecompressor()
                return d.decompress(data)
            except _ZstdError as e:
                raise CompressionNotSupported(f"zstd decompression failed: {e}")
        raise CompressionNotSupported(f"unsupported codec id: {self.codec_id}")
