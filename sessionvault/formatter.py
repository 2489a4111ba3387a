"""Render search results and sessions as markdown or JSON.

Two content modes:

- ``user``: a short snippet and the canonical link.
- ``agent``: relevance score, matched excerpts, the transcript split into
  paragraphs, and the canonical link.

``compact`` is a one-line-per-result listing used by ``wwdc --verbosity compact``.
JSON output always uses sorted keys so field order is stable.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from .records import Record
from .search import SearchResult, canonical_url

MODE_USER = "user"
MODE_AGENT = "agent"
MODE_COMPACT = "compact"

FORMAT_MARKDOWN = "markdown"
FORMAT_JSON = "json"

VERBOSITY_MODES = {
    "compact": MODE_COMPACT,
    "detailed": MODE_USER,
    "full": MODE_AGENT,
}

SNIPPET_LIMIT = 200


def rank_results(results: Sequence[SearchResult]) -> List[SearchResult]:
    return sorted(results, key=lambda r: (-r.score, r.id))


def paragraphs(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [p.strip() for p in text.split("\n\n") if p.strip()]


def _snippet(result: SearchResult) -> str:
    return result.excerpt if len(result.excerpt) <= SNIPPET_LIMIT else result.excerpt[:SNIPPET_LIMIT] + "..."


def _dumps(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)


def year_bands(results: Sequence[SearchResult], recent_since: Optional[int] = None):
    """Split ranked results into (recent, earlier); recent means year >= recent_since."""
    if recent_since is None:
        recent_since = date.today().year - 1
    ranked = rank_results(results)
    recent = [r for r in ranked if r.year >= recent_since]
    earlier = [r for r in ranked if r.year < recent_since]
    return recent, earlier


# ---------- search results ----------

def _result_markdown(result: SearchResult, index: int, mode: str) -> str:
    if mode == MODE_COMPACT:
        return f"{index}. {result.title} ({result.year}) [score {result.score:.1f}]\n"
    out = f"{index}. **{result.title}** ({result.year})\n"
    if mode == MODE_USER:
        if result.excerpt:
            out += f"   {_snippet(result)}\n"
        out += f"   Full video: {result.url}\n"
        return out + "\n"
    out += f"   Relevance Score: {result.score:.2f}\n"
    out += "   **Matching content:**\n"
    out += f"   - {result.excerpt}\n"
    for seg in result.segments:
        out += f"   - [{seg.time}] {seg.text}\n"
    body = paragraphs(result.transcript)
    if body:
        out += "\n   **Transcript:**\n"
        for para in body:
            out += f"   {para}\n\n"
    out += f"   **Source:** {result.url}\n"
    return out + "\n"


def format_results_markdown(
    results: Sequence[SearchResult],
    query: str,
    mode: str = MODE_USER,
    recent_since: Optional[int] = None,
) -> str:
    if not results:
        return f'No results found for "{query}"\n\nTry different keywords or browse sessions by year.\n'
    out = ""
    if any(r.placeholder for r in results):
        out += "> Placeholder results: the session bundle was not searched.\n\n"
    recent, earlier = year_bands(results, recent_since)
    if recent:
        out += f"## Recent Sessions - {len(recent)} results\n\n"
        for i, r in enumerate(recent, 1):
            out += _result_markdown(r, i, mode)
    if earlier:
        if recent:
            out += "\n"
        out += f"## Earlier Sessions - {len(earlier)} results\n\n"
        for i, r in enumerate(earlier, 1):
            out += _result_markdown(r, i, mode)
    out += "\n---\n\n"
    out += f'**Search query:** "{query}" | **Total results:** {len(results)} | **Source:** WWDC Sessions Archive\n'
    return out


def _result_dict(result: SearchResult, mode: str) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "id": result.id,
        "title": result.title,
        "year": result.year,
        "url": result.url,
    }
    if result.placeholder:
        d["placeholder"] = True
    if mode == MODE_COMPACT:
        d["relevanceScore"] = round(result.score, 2)
    elif mode == MODE_USER:
        d["snippet"] = _snippet(result)
    else:
        d["relevanceScore"] = round(result.score, 2)
        d["matchingText"] = [result.excerpt] + [f"[{s.time}] {s.text}" for s in result.segments]
        d["timeSegments"] = [{"time": s.time, "text": s.text} for s in result.segments]
        d["transcript"] = paragraphs(result.transcript)
    return d


def format_results_json(results: Sequence[SearchResult], query: str, mode: str = MODE_USER) -> str:
    ranked = rank_results(results)
    return _dumps({
        "query": query,
        "mode": mode,
        "resultCount": len(ranked),
        "results": [_result_dict(r, mode) for r in ranked],
    })


def format_results(results: Sequence[SearchResult], query: str, mode: str = MODE_USER, fmt: str = FORMAT_MARKDOWN) -> str:
    if fmt == FORMAT_JSON:
        return format_results_json(results, query, mode)
    return format_results_markdown(results, query, mode)


# ---------- single session ----------

def format_session(record: Record, content: str, mode: str = MODE_USER, fmt: str = FORMAT_MARKDOWN) -> str:
    url = canonical_url(record)
    title = record.display_title
    body = paragraphs(content)
    words = len(content.split())
    if fmt == FORMAT_JSON:
        d: Dict[str, Any] = {
            "id": record.id,
            "title": title,
            "year": record.year,
            "url": url,
            "wordCount": words,
        }
        if mode == MODE_AGENT:
            d["transcript"] = body
        else:
            d["snippet"] = (record.excerpt or (body[0] if body else ""))[:SNIPPET_LIMIT]
        return _dumps(d)

    out = f"# {title}\n\n**WWDC {record.year} - {record.id}**\n\n"
    if mode == MODE_AGENT:
        out += f"**Official Video:** {url}\n\n## Transcript\n\n*{words} words*\n\n"
        for para in body:
            out += f"{para}\n\n"
    else:
        out += f"**Watch Full Video:** {url}\n\n"
        summary = record.excerpt or (body[0] if body else "")
        if summary:
            out += f"**Summary:**\n{summary[:SNIPPET_LIMIT]}\n\n"
    out += "---\n\n"
    out += f"**Source:** WWDC {record.year} session {record.id}. Original video content: https://developer.apple.com/videos/\n"
    return out


def format_sessions(records: Sequence[Record], fmt: str = FORMAT_MARKDOWN) -> str:
    """Year listing: titles and links only, grouped by year (newest first)."""
    by_year: Dict[int, List[Record]] = {}
    for r in records:
        by_year.setdefault(r.year, []).append(r)
    if fmt == FORMAT_JSON:
        return _dumps({
            "sessionCount": len(records),
            "sessions": [
                {"id": r.id, "title": r.display_title, "year": r.year, "url": canonical_url(r)}
                for y in sorted(by_year, reverse=True)
                for r in sorted(by_year[y], key=lambda x: x.id)
            ],
        })
    if not records:
        return "No sessions found.\n"
    out = "# WWDC Sessions Archive\n\n"
    for y in sorted(by_year, reverse=True):
        group = sorted(by_year[y], key=lambda x: x.id)
        out += f"## {y} Sessions ({len(group)} sessions)\n\n"
        for i, r in enumerate(group, 1):
            out += f"{i}. **{r.display_title}** ({r.id})\n   {canonical_url(r)}\n"
        out += "\n"
    return out


def format_statistics(stats: Dict[str, Any], fmt: str = FORMAT_MARKDOWN) -> str:
    if fmt == FORMAT_JSON:
        return _dumps(stats)
    years = stats.get("years") or []
    lines = [
        f"Bundle: {stats['path']}",
        f"  Format version: {stats['format_version']}",
        f"  Type: {'plaintext database' if stats['plaintext_database'] else 'encrypted bundle'}",
        f"  Content key: {stats['content_key']}",
        f"  Codec: {stats['codec']}",
        f"  File size: {stats['file_size']} bytes (envelope {stats['envelope_size']} bytes)",
        f"  Sessions: {stats['total_sessions']}",
        f"  Index terms: {stats['index_terms']}",
    ]
    if years:
        lines.append(f"  Years: {years[0]}-{years[1]}")
    for y, n in stats.get("sessions_per_year", {}).items():
        lines.append(f"    {y}: {n}")
    return "\n".join(lines) + "\n"
