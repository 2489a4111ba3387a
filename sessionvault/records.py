"""Record Codec: session records and the archive envelope.

The envelope is UTF-8 JSON::

    {
      "version": 1,
      "sessions": [{"id", "title", "year", "content", "checksum", ["excerpt"], ["url"]}, ...],
      "search_index": {"term": ["id", ...], ...},
      "metadata": {...}
    }

Unknown keys are ignored so newer builders can add fields; a missing or
mistyped mandatory key is always an ``InvalidDataFormat``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from .constants import FORMAT_VERSION
from .errors import InvalidDataFormat
from .obfuscate import deobfuscate_title


@dataclass(frozen=True)
class Record:
    id: str
    title: str  # obfuscated
    year: int
    content: str  # base64(nonce || ciphertext || tag), or plaintext in a development database
    checksum: str
    excerpt: Optional[str] = None
    url: Optional[str] = None

    @property
    def display_title(self) -> str:
        return deobfuscate_title(self.title)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "year": self.year,
            "content": self.content,
            "checksum": self.checksum,
        }
        if self.excerpt is not None:
            d["excerpt"] = self.excerpt
        if self.url is not None:
            d["url"] = self.url
        return d


@dataclass
class Archive:
    records: List[Record]
    search_index: Dict[str, FrozenSet[str]]
    metadata: Dict[str, Any] = field(default_factory=dict)
    format_version: int = FORMAT_VERSION
    _by_id: Dict[str, Record] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self._by_id = {r.id: r for r in self.records}

    def get(self, record_id: str) -> Optional[Record]:
        return self._by_id.get(record_id)

    def __len__(self) -> int:
        return len(self.records)

    def years(self) -> List[int]:
        return sorted({r.year for r in self.records})


def _require(obj: Mapping[str, Any], key: str, kind, where: str):
    if key not in obj:
        raise InvalidDataFormat(f"{where}: missing required field '{key}'")
    value = obj[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) or not isinstance(value, kind):
        raise InvalidDataFormat(f"{where}: field '{key}' has wrong type {type(value).__name__}")
    return value


def _optional_str(obj: Mapping[str, Any], key: str, where: str) -> Optional[str]:
    value = obj.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidDataFormat(f"{where}: field '{key}' must be a string")
    return value


def record_from_dict(obj: Any, position: int = 0) -> Record:
    where = f"session[{position}]"
    if not isinstance(obj, dict):
        raise InvalidDataFormat(f"{where}: expected an object")
    return Record(
        id=_require(obj, "id", str, where),
        title=_require(obj, "title", str, where),
        year=_require(obj, "year", int, where),
        content=_require(obj, "content", str, where),
        checksum=_require(obj, "checksum", str, where),
        excerpt=_optional_str(obj, "excerpt", where),
        url=_optional_str(obj, "url", where),
    )


def encode_archive(archive: Archive) -> bytes:
    envelope = {
        "version": archive.format_version,
        "sessions": [r.to_dict() for r in archive.records],
        "search_index": {term: sorted(ids) for term, ids in sorted(archive.search_index.items())},
        "metadata": archive.metadata,
    }
    return json.dumps(envelope, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def parse_archive(data: bytes) -> Archive:
    try:
        envelope = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidDataFormat(f"Envelope is not valid UTF-8 JSON: {exc}")
    if not isinstance(envelope, dict):
        raise InvalidDataFormat("Envelope must be a JSON object")

    version = _require(envelope, "version", int, "envelope")
    if version != FORMAT_VERSION:
        raise InvalidDataFormat(f"Unsupported format version {version} (expected {FORMAT_VERSION})")

    sessions = _require(envelope, "sessions", list, "envelope")
    records: List[Record] = []
    seen = set()
    for pos, obj in enumerate(sessions):
        rec = record_from_dict(obj, pos)
        if rec.id in seen:
            raise InvalidDataFormat(f"Duplicate session id: {rec.id}")
        seen.add(rec.id)
        records.append(rec)

    raw_index = _require(envelope, "search_index", dict, "envelope")
    search_index: Dict[str, FrozenSet[str]] = {}
    for term, ids in raw_index.items():
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise InvalidDataFormat(f"search_index['{term}'] must be a list of session ids")
        missing = [i for i in ids if i not in seen]
        if missing:
            raise InvalidDataFormat(f"search_index['{term}'] references unknown session id(s): {missing[:5]}")
        search_index[term.lower()] = search_index.get(term.lower(), frozenset()) | frozenset(ids)

    metadata = envelope.get("metadata", {})
    if not isinstance(metadata, dict):
        raise InvalidDataFormat("metadata must be an object")

    return Archive(records=records, search_index=search_index, metadata=metadata, format_version=version)


def normalize_index(index: Mapping[str, Iterable[str]]) -> Dict[str, FrozenSet[str]]:
    out: Dict[str, FrozenSet[str]] = {}
    for term, ids in index.items():
        key = term.lower()
        out[key] = out.get(key, frozenset()) | frozenset(ids)
    return out
