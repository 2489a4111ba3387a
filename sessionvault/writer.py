from __future__ import annotations

import os
import re
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .codec import Codec
from .constants import CODEC_NONE, DEFAULT_CODEC_ID, FLAG_PLAINTEXT, FORMAT_VERSION
from .encryption import ContentCipher, check_key
from .errors import BuildError, VaultError
from .hashutil import content_checksum
from .obfuscate import obfuscate_title
from .records import Archive, Record, encode_archive, normalize_index
from .superblock import pack_superblock


PUBLIC_EXCERPT_LIMIT = 200

_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class SessionInput:
    """A plaintext session as handed to the build pipeline."""

    id: str
    title: str
    year: int
    content: str
    excerpt: Optional[str] = None
    url: Optional[str] = None


@dataclass
class BuildReport:
    path: str
    records_written: int
    records_skipped: int
    plaintext_size: int
    compressed_size: int
    codec: str
    index_terms: int

    @property
    def compression_ratio(self) -> float:
        """Percentage of the serialized envelope saved by compression."""
        if self.plaintext_size == 0:
            return 0.0
        return 100.0 - (self.compressed_size / self.plaintext_size * 100.0)


def session_from_mapping(obj: Mapping[str, Any]) -> Optional[SessionInput]:
    """Return a SessionInput, or None when a mandatory field is absent or mistyped."""
    if not isinstance(obj, Mapping):
        return None
    sid = obj.get("id")
    title = obj.get("title")
    year = obj.get("year")
    content = obj.get("content")
    if not isinstance(sid, str) or not sid:
        return None
    if not isinstance(title, str) or not isinstance(content, str):
        return None
    if isinstance(year, bool) or not isinstance(year, int):
        return None
    excerpt = obj.get("excerpt")
    url = obj.get("url")
    return SessionInput(
        id=sid,
        title=title,
        year=year,
        content=content,
        excerpt=excerpt if isinstance(excerpt, str) else None,
        url=url if isinstance(url, str) else None,
    )


def build_search_index(sessions: Iterable[SessionInput], *, min_length: int = 3) -> Dict[str, Set[str]]:
    """Derive a term -> session ids inverted index from titles and transcripts."""
    index: Dict[str, Set[str]] = {}
    for s in sessions:
        text = f"{s.title}\n{s.content}".lower()
        for term in set(_TOKEN_RE.findall(text)):
            if len(term) < min_length:
                continue
            index.setdefault(term, set()).add(s.id)
    return index


def _atomic_write(out_path: str, data: bytes) -> None:
    out_dir = os.path.dirname(os.path.abspath(out_path)) or "."
    os.makedirs(out_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".sessionvault-", suffix=".tmp", dir=out_dir)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, out_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def write_archive(out_path: str, archive: Archive, *, codec_id: int, level: Optional[int] = None, flags: int = 0) -> Tuple[int, int]:
    """Serialize, compress and atomically write an archive. Returns (envelope_len, stored_len)."""
    raw = encode_archive(archive)
    payload = Codec(codec_id, level).compress(raw)
    header = pack_superblock(codec_id, flags, payload_len=len(payload), raw_len=len(raw))
    _atomic_write(out_path, header + payload)
    return len(raw), len(payload)


def _metadata(records: List[Record], codec: Codec, **extra: Any) -> Dict[str, Any]:
    years = [r.year for r in records]
    meta: Dict[str, Any] = {
        "total_sessions": len(records),
        "years_range": [min(years), max(years)] if years else [],
        "created_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "codec": codec.name,
        "obfuscation_version": 1,
    }
    meta.update(extra)
    return meta


class BundleWriter:
    """Builds an encrypted session bundle.

    Sessions are obfuscated and encrypted as they are added; nothing touches the
    output path until ``finalize`` succeeds, and the final write is atomic, so a
    failed build never leaves a partially encrypted bundle behind.
    """

    def __init__(
        self,
        out_path: str,
        key: bytes,
        codec_id: int = DEFAULT_CODEC_ID,
        level: Optional[int] = None,
        include_excerpts: bool = False,
        quiet: bool = False,
    ):
        self.out_path = out_path
        self.cipher = ContentCipher(check_key(key))
        self.codec_id = codec_id
        self.level = level
        self.include_excerpts = include_excerpts
        self.quiet = quiet
        self.records: List[Record] = []
        self.skipped = 0
        self._ids: Set[str] = set()
        self._finalized = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        # Nothing is written unless finalize() ran; abandoning is always safe.
        return False

    def add(self, session: Any) -> bool:
        """Encrypt and stage one session. Returns False when it was skipped."""
        if self._finalized:
            raise BuildError("Bundle already finalized")
        s = session if isinstance(session, SessionInput) else session_from_mapping(session)
        if s is None:
            self.skipped += 1
            ident = session.get("id", "?") if isinstance(session, Mapping) else "?"
            print(f"Warning: skipping session {ident}: missing or invalid mandatory field", file=sys.stderr)
            return False
        if s.id in self._ids:
            self.skipped += 1
            print(f"Warning: skipping duplicate session id {s.id}", file=sys.stderr)
            return False
        try:
            encrypted = self.cipher.encrypt(s.content)
        except (ValueError, TypeError, UnicodeError, VaultError) as exc:
            raise BuildError(f"Encryption failed for session {s.id}: {exc}")
        excerpt = None
        if self.include_excerpts:
            excerpt = s.excerpt
            if excerpt is None:
                excerpt = s.content[:PUBLIC_EXCERPT_LIMIT]
                if len(s.content) > PUBLIC_EXCERPT_LIMIT:
                    excerpt += "..."
        self.records.append(
            Record(
                id=s.id,
                title=obfuscate_title(s.title),
                year=s.year,
                content=encrypted,
                checksum=content_checksum(s.content),
                excerpt=excerpt,
                url=s.url,
            )
        )
        self._ids.add(s.id)
        return True

    def finalize(self, search_index: Mapping[str, Iterable[str]]) -> BuildReport:
        if self._finalized:
            raise BuildError("Bundle already finalized")
        if not self.records:
            raise BuildError("No valid sessions to write")
        index = normalize_index(search_index)
        dropped = 0
        for term in list(index):
            ids = index[term]
            kept = frozenset(i for i in ids if i in self._ids)
            dropped += len(ids) - len(kept)
            if kept:
                index[term] = kept
            else:
                del index[term]
        if dropped:
            print(f"Warning: dropped {dropped} index reference(s) to sessions not in the bundle", file=sys.stderr)

        codec = Codec(self.codec_id, self.level)
        archive = Archive(
            records=self.records,
            search_index=index,
            metadata=_metadata(self.records, codec, security_model="encrypted_content"),
            format_version=FORMAT_VERSION,
        )
        raw_len, stored_len = write_archive(self.out_path, archive, codec_id=self.codec_id, level=self.level)
        self._finalized = True
        report = BuildReport(
            path=self.out_path,
            records_written=len(self.records),
            records_skipped=self.skipped,
            plaintext_size=raw_len,
            compressed_size=stored_len,
            codec=codec.name,
            index_terms=len(index),
        )
        if not self.quiet:
            print(f" Serialized size: {report.plaintext_size} bytes")
            print(f" Compressed size: {report.compressed_size} bytes ({report.codec})")
            print(f" Compression ratio: {report.compression_ratio:.1f}%")
        return report


def build_bundle(
    out_path: str,
    sessions: Iterable[Any],
    key: bytes,
    search_index: Optional[Mapping[str, Iterable[str]]] = None,
    *,
    codec_id: int = DEFAULT_CODEC_ID,
    level: Optional[int] = None,
    include_excerpts: bool = False,
    quiet: bool = False,
) -> BuildReport:
    """One-shot build: encrypt every session, then write the bundle.

    When ``search_index`` is None an index is derived from the valid sessions.
    """
    sessions = list(sessions)
    with BundleWriter(out_path, key, codec_id=codec_id, level=level, include_excerpts=include_excerpts, quiet=quiet) as w:
        if not quiet:
            print(f" Processing {len(sessions)} sessions...", flush=True)
        for s in sessions:
            w.add(s)
        if search_index is None:
            valid = [s if isinstance(s, SessionInput) else session_from_mapping(s) for s in sessions]
            search_index = build_search_index(v for v in valid if v is not None)
        return w.finalize(search_index)


def write_plain_database(out_path: str, archive: Archive, plaintexts: Mapping[str, str]) -> Tuple[int, int]:
    """Write the development database: same envelope, content stored in the clear.

    ``plaintexts`` maps session id to decrypted content; sessions without an
    entry are left out, along with their index references.
    """
    records = [
        Record(
            id=r.id,
            title=r.title,
            year=r.year,
            content=plaintexts[r.id],
            checksum=r.checksum,
            excerpt=r.excerpt,
            url=r.url,
        )
        for r in archive.records
        if r.id in plaintexts
    ]
    kept = {r.id for r in records}
    index = {}
    for term, ids in archive.search_index.items():
        sub = frozenset(i for i in ids if i in kept)
        if sub:
            index[term] = sub
    codec = Codec(CODEC_NONE)
    plain = Archive(
        records=records,
        search_index=index,
        metadata=_metadata(records, codec, security_model="plaintext_development"),
        format_version=archive.format_version,
    )
    return write_archive(out_path, plain, codec_id=CODEC_NONE, flags=FLAG_PLAINTEXT)
