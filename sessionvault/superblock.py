from __future__ import annotations

import struct
import time
import zlib
from dataclasses import dataclass

from .constants import BUNDLE_MAGIC, HEADER_VERSION
from .errors import InvalidDataFormat


_SUPERBLOCK_STRUCT = struct.Struct("<8sHHIQQQ8sI")
# Fields (little endian):
# magic[8], header_version u16, codec_id u16, flags u32,
# created_sec u64, payload_len u64 (stored bytes), raw_len u64 (envelope bytes),
# reserved[8], header_crc32 u32

SUPERBLOCK_SIZE = _SUPERBLOCK_STRUCT.size


@dataclass
class Superblock:
    header_version: int
    codec_id: int
    flags: int
    created_sec: int
    payload_len: int
    raw_len: int


def pack_superblock(codec_id: int, flags: int, payload_len: int, raw_len: int, created_sec: int | None = None) -> bytes:
    if created_sec is None:
        created_sec = int(time.time())
    pre = _SUPERBLOCK_STRUCT.pack(
        BUNDLE_MAGIC,
        HEADER_VERSION,
        codec_id,
        flags,
        created_sec,
        payload_len,
        raw_len,
        b"\x00" * 8,
        0,  # crc placeholder
    )
    crc = zlib.crc32(pre[:-4]) & 0xFFFFFFFF
    return pre[:-4] + struct.pack("<I", crc)


def read_superblock(data: bytes) -> Superblock:
    raw = data[:SUPERBLOCK_SIZE]
    if len(raw) != SUPERBLOCK_SIZE:
        raise InvalidDataFormat("Bundle header too short")
    (magic, hver, codec_id, flags, csec, plen, rlen, _res8, hdr_crc) = _SUPERBLOCK_STRUCT.unpack(raw)
    if magic != BUNDLE_MAGIC:
        raise InvalidDataFormat("Bad bundle magic; not a session bundle")
    if (zlib.crc32(raw[:-4]) & 0xFFFFFFFF) != hdr_crc:
        raise InvalidDataFormat("Bundle header CRC mismatch")
    if hver != HEADER_VERSION:
        raise InvalidDataFormat(f"Unsupported bundle header version: {hver}")
    if len(data) - SUPERBLOCK_SIZE != plen:
        raise InvalidDataFormat(
            f"Bundle payload length mismatch (header says {plen}, found {len(data) - SUPERBLOCK_SIZE})"
        )
    return Superblock(
        header_version=hver,
        codec_id=codec_id,
        flags=flags,
        created_sec=csec,
        payload_len=plen,
        raw_len=rlen,
    )
