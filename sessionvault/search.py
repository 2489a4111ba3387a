from __future__ import annotations

import concurrent.futures as _fut
import re
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .constants import (
    ELLIPSIS,
    EXCERPT_LIMIT,
    MAX_SEGMENTS,
    SEGMENT_AFTER,
    SEGMENT_BEFORE,
    SEGMENT_LIMIT,
    VIDEOS_URL,
)
from .errors import (
    CompressionNotSupported,
    DataNotAvailable,
    DecryptionFailed,
    InvalidDataFormat,
    RealDataFailed,
)
from .reader import ArchiveReader
from .records import Record


# Whole-query aliases. Lookup is by exact normalized query; expansion is one
# level deep and never applied per token.
DEFAULT_SYNONYMS: Dict[str, List[str]] = {
    "shareplay": ["group activities", "groupactivities", "shared experience", "shared activity", "collaborative"],
    "groupactivities": ["shareplay", "group activities", "shared experience"],
    "timeline": ["animation", "playback", "animationresource", "realitykit"],
    "realitykit": ["timeline", "animation", "reality composer", "rcp"],
    "swiftui": ["swift ui", "uikit equivalent"],
}

INTRO_KEYWORDS = ("introduction", "fundamentals")
ADVANCED_KEYWORDS = ("advanced", "deep dive")

TITLE_MATCH_BONUS = 20.0
OCCURRENCE_BONUS = 2.5
RECENCY_BONUSES = (10.0, 5.0, 2.0)
INTRO_BONUS = 8.0
ADVANCED_BONUS = 12.0
MIN_SCORE = 1.0

_TIME_RE = re.compile(r"\b(\d{1,2}:\d{2})\b")
_WWDC_ID_RE = re.compile(r"^wwdc(\d{4})[-_](\w+)$", re.IGNORECASE)


@dataclass
class TimeSegment:
    time: str
    text: str


@dataclass
class SearchResult:
    id: str
    title: str
    year: int
    score: float
    excerpt: str
    url: str
    segments: List[TimeSegment] = field(default_factory=list)
    transcript: Optional[str] = None
    placeholder: bool = False


def normalize_query(query: str) -> str:
    q = query.strip().lower()
    if not q:
        raise ValueError("Search query must not be empty")
    return q


def expand_query(normalized: str, synonyms: Optional[Mapping[str, Sequence[str]]] = None) -> List[str]:
    table = DEFAULT_SYNONYMS if synonyms is None else synonyms
    terms = [normalized]
    for alias in table.get(normalized, ()):
        alias = alias.strip().lower()
        # a blank alias would be a substring of every text
        if alias and alias not in terms:
            terms.append(alias)
    return terms


def canonical_url(record: Record) -> str:
    if record.url:
        return record.url
    m = _WWDC_ID_RE.match(record.id)
    if m:
        return f"{VIDEOS_URL}play/wwdc{m.group(1)}/{m.group(2)}/"
    return VIDEOS_URL


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ELLIPSIS if len(text) > limit else text


def relevance_score(title: str, content: str, query: str, newest_year: Optional[int] = None) -> float:
    lower_title = title.lower()
    lower_query = query.lower()
    score = 0.0
    if lower_query in lower_title:
        score += TITLE_MATCH_BONUS
    # str.count is non-overlapping
    score += content.lower().count(lower_query) * OCCURRENCE_BONUS
    if newest_year is not None:
        for offset, bonus in enumerate(RECENCY_BONUSES):
            if str(newest_year - offset) in title:
                score += bonus
                break
    if any(k in lower_title for k in INTRO_KEYWORDS):
        score += INTRO_BONUS
    if any(k in lower_title for k in ADVANCED_KEYWORDS):
        score += ADVANCED_BONUS
    return max(score, MIN_SCORE)


def extract_excerpt(content: str, query: str) -> str:
    lower_query = query.lower()
    for sentence in content.split(". "):
        if lower_query in sentence.lower():
            return _truncate(sentence.strip(), EXCERPT_LIMIT)
    return _truncate(content, EXCERPT_LIMIT)


def extract_time_segments(content: str, query: str) -> List[TimeSegment]:
    lower_query = query.lower()
    segments: List[TimeSegment] = []
    for m in _TIME_RE.finditer(content):
        start = max(0, m.start() - SEGMENT_BEFORE)
        end = min(len(content), m.end() + SEGMENT_AFTER)
        context = " ".join(content[start:end].split())
        if lower_query not in context.lower():
            continue
        segments.append(TimeSegment(time=m.group(1), text=_truncate(context, SEGMENT_LIMIT)))
        if len(segments) >= MAX_SEGMENTS:
            break
    return segments


def _contains_any(text: Optional[str], terms: Iterable[str]) -> bool:
    if not text:
        return False
    lower = text.lower()
    return any(t in lower for t in terms)


class SearchEngine:
    """Full-text search over an open ArchiveReader.

    Results come back in no particular order; ranking and grouping belong to
    the formatter.
    """

    def __init__(
        self,
        reader: ArchiveReader,
        synonyms: Optional[Mapping[str, Sequence[str]]] = None,
        jobs: int = 1,
    ):
        self.reader = reader
        self.synonyms = DEFAULT_SYNONYMS if synonyms is None else synonyms
        self.jobs = max(1, int(jobs))

    def newest_year(self) -> Optional[int]:
        years = self.reader.archive.years()
        return years[-1] if years else None

    def _index_candidates(self, terms: Sequence[str]) -> Set[str]:
        index = self.reader.archive.search_index
        matched: Set[str] = set()
        for term in terms:
            matched |= index.get(term, frozenset())
        return matched

    def _scan(self, terms: Sequence[str], matched: Set[str]) -> Set[str]:
        pending: List[Record] = []
        for rec in self.reader.records():
            if rec.id in matched:
                continue
            if _contains_any(rec.display_title, terms) or _contains_any(rec.excerpt, terms):
                matched.add(rec.id)
            else:
                pending.append(rec)

        if self.jobs > 1 and len(pending) > 1:
            with _fut.ThreadPoolExecutor(max_workers=self.jobs) as ex:
                contents = list(ex.map(self.reader.decrypt, pending))
        else:
            contents = [self.reader.decrypt(rec) for rec in pending]
        for rec, content in zip(pending, contents):
            if _contains_any(content, terms):
                matched.add(rec.id)
        return matched

    def search(self, query: str) -> List[SearchResult]:
        normalized = normalize_query(query)
        if not self.reader.can_decrypt:
            # No record could ever carry content, so no record could be a result.
            raise DecryptionFailed("Bundle content is encrypted and no key is configured (set SESSIONVAULT_KEY)")
        terms = expand_query(normalized, self.synonyms)
        matched = self._scan(terms, self._index_candidates(terms))

        newest = self.newest_year()
        results: List[SearchResult] = []
        for record_id in matched:
            rec = self.reader.get(record_id)
            if rec is None:
                continue
            content = self.reader.decrypt(rec)
            if content is None:
                # Content is mandatory for a final result.
                continue
            title = rec.display_title
            results.append(
                SearchResult(
                    id=rec.id,
                    title=title,
                    year=rec.year,
                    score=relevance_score(title, content, normalized, newest),
                    excerpt=extract_excerpt(content, normalized),
                    url=canonical_url(rec),
                    segments=extract_time_segments(content, normalized),
                    transcript=content,
                )
            )
        return results


_PLACEHOLDERS = [
    ("shareplay", "wwdc2021-10183", "Build SharePlay experiences", 2021,
     "Learn how to integrate SharePlay and GroupActivities into your apps to create shared experiences."),
    ("groupactivities", "wwdc2021-10187", "Meet GroupActivities", 2021,
     "Dive into the GroupActivities framework and coordinate activities between people."),
    ("realitykit", "wwdc2023-10083", "Dive into Reality Composer Pro", 2023,
     "Use timeline animation in Reality Composer Pro to build spatial experiences."),
    ("swiftui", "wwdc2024-10144", "What's new in SwiftUI", 2024,
     "Explore the latest SwiftUI APIs for animations, layout and data flow."),
    ("concurrency", "wwdc2021-10132", "Meet async/await in Swift", 2021,
     "Learn how async/await makes asynchronous Swift code easier to write and reason about."),
]


def placeholder_results(query: str, synonyms: Optional[Mapping[str, Sequence[str]]] = None) -> List[SearchResult]:
    """Canned results for demos and offline development.

    Every result is flagged ``placeholder=True``; callers must opt in
    explicitly (``force_real_data=False``).
    """
    terms = expand_query(normalize_query(query), synonyms)
    out = []
    for topic, sid, title, year, blurb in _PLACEHOLDERS:
        if any(topic in t or t in topic for t in terms):
            out.append(SearchResult(
                id=sid, title=title, year=year, score=MIN_SCORE, excerpt=blurb,
                url=f"{VIDEOS_URL}play/wwdc{year}/{sid.split('-')[1]}/", placeholder=True,
            ))
    if not out:
        out.append(SearchResult(
            id="placeholder", title=f"WWDC sessions about {query.strip()}", year=0, score=MIN_SCORE,
            excerpt="Placeholder result: the session bundle was not used.", url=VIDEOS_URL, placeholder=True,
        ))
    return out


def search_bundle(
    query: str,
    path: str,
    key: Optional[bytes] = None,
    *,
    force_real_data: bool = True,
    synonyms: Optional[Mapping[str, Sequence[str]]] = None,
    jobs: int = 1,
) -> List[SearchResult]:
    """Search the bundle at ``path``.

    With ``force_real_data`` (the default) load and decryption errors
    propagate, and an empty result set raises RealDataFailed. Only when the
    caller opts out are placeholder results substituted.
    """
    try:
        with ArchiveReader(path, key=key) as reader:
            results = SearchEngine(reader, synonyms=synonyms, jobs=jobs).search(query)
    except (DataNotAvailable, InvalidDataFormat, CompressionNotSupported, DecryptionFailed) as exc:
        if force_real_data:
            raise
        print(f"Warning: could not search real session data, using placeholders: {exc}", file=sys.stderr)
        return placeholder_results(query, synonyms)
    if not results:
        if force_real_data:
            raise RealDataFailed(f"No sessions found for {query.strip()!r} in {path}")
        return placeholder_results(query, synonyms)
    return results
