from __future__ import annotations

import sys
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .codec import Codec
from .constants import FLAG_PLAINTEXT
from .encryption import ContentCipher
from .errors import ChecksumMismatch, DataNotAvailable, DecryptionFailed, SessionNotFound
from .hashutil import checksum_matches
from .records import Archive, Record, parse_archive
from .superblock import SUPERBLOCK_SIZE, Superblock, read_superblock


@dataclass
class LoadedBundle:
    path: str
    superblock: Superblock
    archive: Archive
    file_size: int

    @property
    def plaintext(self) -> bool:
        return bool(self.superblock.flags & FLAG_PLAINTEXT)


def load_bundle(path: str) -> LoadedBundle:
    """Read, decompress and parse a bundle. Record content is left encrypted."""
    try:
        with open(path, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        raise DataNotAvailable(f"Unable to read bundle {path}: {exc}")
    sb = read_superblock(data)
    raw = Codec(sb.codec_id).decompress(data[SUPERBLOCK_SIZE:])
    archive = parse_archive(raw)
    return LoadedBundle(path=str(path), superblock=sb, archive=archive, file_size=len(data))


def load(path: str) -> Archive:
    return load_bundle(path).archive


class ArchiveReader:
    """Read-only view of a loaded bundle with lazy, cached per-record decryption.

    Content is only decrypted when a record is asked for, so a query touches
    the cipher for candidates rather than for the whole corpus up front.
    """

    def __init__(self, path: str, key: Optional[bytes] = None):
        self.path = path
        self.key = key
        self.bundle: Optional[LoadedBundle] = None
        self.cipher: Optional[ContentCipher] = None
        self._plain: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.bundle is not None:
            return
        self.bundle = load_bundle(self.path)
        if not self.bundle.plaintext and self.key is not None:
            self.cipher = ContentCipher(self.key)

    def close(self):
        with self._lock:
            self._plain.clear()
        self.bundle = None
        self.cipher = None

    @property
    def archive(self) -> Archive:
        if self.bundle is None:
            raise RuntimeError("Bundle not open")
        return self.bundle.archive

    @property
    def is_plaintext(self) -> bool:
        return self.bundle is not None and self.bundle.plaintext

    @property
    def can_decrypt(self) -> bool:
        return self.is_plaintext or self.cipher is not None

    def records(self) -> List[Record]:
        return self.archive.records

    def get(self, record_id: str) -> Optional[Record]:
        return self.archive.get(record_id)

    def _open_content(self, record: Record) -> str:
        if self.is_plaintext:
            plaintext = record.content
        elif self.cipher is None:
            raise DecryptionFailed("No content key configured (set SESSIONVAULT_KEY)")
        else:
            plaintext = self.cipher.decrypt(record.content)
        if not checksum_matches(plaintext, record.checksum):
            raise ChecksumMismatch(f"Checksum mismatch for session {record.id}; bundle may be corrupted")
        return plaintext

    def require_content(self, record: Record) -> str:
        """Decrypt and verify; raises DecryptionFailed/ChecksumMismatch."""
        with self._lock:
            cached = self._plain.get(record.id)
        if cached is not None:
            return cached
        plaintext = self._open_content(record)
        with self._lock:
            self._plain[record.id] = plaintext
        return plaintext

    def decrypt(self, record: Record) -> Optional[str]:
        """Decrypt and verify, returning None on any failure.

        A checksum mismatch is still reported on stderr: the record is excluded,
        not silently accepted.
        """
        with self._lock:
            if record.id in self._plain:
                return self._plain[record.id]
        try:
            plaintext: Optional[str] = self._open_content(record)
        except ChecksumMismatch as exc:
            print(f"Warning: {exc}", file=sys.stderr)
            plaintext = None
        except DecryptionFailed:
            plaintext = None
        with self._lock:
            self._plain[record.id] = plaintext
        return plaintext

    def session(self, record_id: str) -> tuple[Record, str]:
        """Explicit single-session retrieval: content is mandatory here."""
        rec = self.get(record_id)
        if rec is None:
            raise SessionNotFound(f"Session not found: {record_id}")
        return rec, self.require_content(rec)

    def by_year(self, year: int) -> List[Record]:
        return sorted((r for r in self.archive.records if r.year == year), key=lambda r: r.id)

    def statistics(self) -> Dict[str, Any]:
        arc = self.archive
        sb = self.bundle.superblock if self.bundle else None
        per_year: Dict[int, int] = {}
        for r in arc.records:
            per_year[r.year] = per_year.get(r.year, 0) + 1
        years = sorted(per_year)
        return {
            "path": self.path,
            "format_version": arc.format_version,
            "plaintext_database": self.is_plaintext,
            "content_key": "n/a" if self.is_plaintext else ("configured" if self.cipher else "missing"),
            "codec": Codec(sb.codec_id).name if sb else None,
            "file_size": self.bundle.file_size if self.bundle else 0,
            "envelope_size": sb.raw_len if sb else 0,
            "total_sessions": len(arc.records),
            "index_terms": len(arc.search_index),
            "years": [years[0], years[-1]] if years else [],
            "sessions_per_year": {str(y): per_year[y] for y in years},
            "metadata": arc.metadata,
        }
