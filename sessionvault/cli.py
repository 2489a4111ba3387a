from __future__ import annotations

import argparse
import json as _json
import os
import sys
from datetime import date
from typing import List, Optional

from sessionvault.codec import codec_available, codec_id_from_name
from sessionvault.config import Settings, read_key_file
from sessionvault.constants import (
    CODEC_NAMES,
    DEFAULT_CODEC_ID,
    DEFAULT_RESULT_LIMIT,
    EXIT_BUILD_FAILED,
    EXIT_DECRYPTION,
    EXIT_FAILURE,
    EXIT_INVALID_DATA,
    EXIT_NO_RESULTS,
    EXIT_NOT_FOUND,
    EXIT_USAGE,
)
from sessionvault.errors import (
    BuildError,
    CompressionNotSupported,
    DataNotAvailable,
    DecryptionFailed,
    InvalidDataFormat,
    KeyConfigError,
    RealDataFailed,
    SessionNotFound,
    VaultError,
)
from sessionvault.formatter import (
    FORMAT_JSON,
    FORMAT_MARKDOWN,
    MODE_AGENT,
    MODE_USER,
    VERBOSITY_MODES,
    format_results,
    format_session,
    format_sessions,
    format_statistics,
    rank_results,
)
from sessionvault.locator import BundleLocator, present_missing_bundle, require_bundle
from sessionvault.reader import ArchiveReader
from sessionvault.search import search_bundle
from sessionvault.writer import build_bundle, write_plain_database


def _resolve_key(key_file: Optional[str]) -> Optional[bytes]:
    if key_file:
        return read_key_file(key_file)
    return Settings.from_env().key


def _banner(text: str, fmt: str) -> None:
    if fmt == FORMAT_MARKDOWN:
        print(text)
        print("=" * 50)


def cmd_wwdc(
    query: str,
    *,
    limit: int = DEFAULT_RESULT_LIMIT,
    verbosity: str = "compact",
    fmt: str = FORMAT_MARKDOWN,
    bundle: Optional[str] = None,
    key_file: Optional[str] = None,
    jobs: Optional[int] = None,
    allow_placeholder: bool = False,
    command: str = "sessionvault wwdc",
) -> bool:
    """Search session transcripts and print ranked results.

    Args:
        query: Search text (case-insensitive substring match).
        limit: Maximum number of results to print after ranking.
        verbosity: compact, detailed (user mode) or full (agent mode).
        fmt: markdown or json.
        bundle: Explicit bundle path; otherwise the standard locations are searched.
        key_file: File holding the content key; defaults to SESSIONVAULT_KEY.
        jobs: Worker threads for transcript decryption during the scan.
        allow_placeholder: Substitute placeholder results instead of failing.
    """
    # Must run before anything else so no partial output precedes the failure.
    path = require_bundle(command, explicit=bundle)
    mode = VERBOSITY_MODES[verbosity]
    settings = Settings.from_env()
    key = read_key_file(key_file) if key_file else settings.key
    _banner(f"Searching WWDC sessions for: {query}", fmt)
    results = search_bundle(
        query,
        str(path),
        key,
        force_real_data=not allow_placeholder,
        jobs=jobs if jobs is not None else settings.jobs,
    )
    ranked = rank_results(results)[: max(0, limit)]
    print(format_results(ranked, query, mode, fmt))
    return True


def cmd_search(query: str, *, limit: int = DEFAULT_RESULT_LIMIT, bundle: Optional[str] = None, key_file: Optional[str] = None) -> bool:
    return cmd_wwdc(
        query,
        limit=limit,
        verbosity="detailed",
        bundle=bundle,
        key_file=key_file,
        command="sessionvault search",
    )


def cmd_session(
    session_id: str,
    *,
    mode: str = MODE_USER,
    fmt: str = FORMAT_MARKDOWN,
    bundle: Optional[str] = None,
    key_file: Optional[str] = None,
) -> bool:
    """Print one session. The transcript is mandatory: decryption failures are fatal."""
    path = require_bundle("sessionvault session", explicit=bundle)
    key = _resolve_key(key_file)
    with ArchiveReader(str(path), key=key) as reader:
        record, content = reader.session(session_id)
    _banner(f"Fetching WWDC session: {session_id}", fmt)
    print(format_session(record, content, mode, fmt))
    return True


def cmd_year(year: int, *, fmt: str = FORMAT_MARKDOWN, limit: int = 50, bundle: Optional[str] = None) -> bool:
    current = date.today().year
    if year < 2007 or year > current + 1:
        raise ValueError(f"Invalid year: {year}. WWDC sessions exist from 2007 to {current}.")
    path = require_bundle("sessionvault year", explicit=bundle)
    with ArchiveReader(str(path)) as reader:
        records = reader.by_year(year)[: max(0, limit)]
    _banner(f"WWDC sessions for year: {year}", fmt)
    print(format_sessions(records, fmt))
    return True


def cmd_stats(*, fmt: str = FORMAT_MARKDOWN, bundle: Optional[str] = None, key_file: Optional[str] = None) -> bool:
    path = require_bundle("sessionvault stats", explicit=bundle)
    key = _resolve_key(key_file)
    with ArchiveReader(str(path), key=key) as reader:
        stats = reader.statistics()
    _banner("WWDC Bundle Statistics", fmt)
    print(format_statistics(stats, fmt))
    return True


def cmd_status() -> bool:
    """Report which bundle would be used, without loading it."""
    loc = BundleLocator()
    found = loc.locate()
    if found is None:
        # remediation examples need a command that takes a query
        present_missing_bundle("sessionvault search", loc.candidates())
    print(f"Bundle found: {found}")
    print(f"  Size: {os.path.getsize(found)} bytes")
    return True


def cmd_build(
    input_path: str,
    output: str,
    *,
    key_file: Optional[str] = None,
    codec: str = CODEC_NAMES[DEFAULT_CODEC_ID],
    level: Optional[int] = None,
    include_excerpts: bool = False,
    quiet: bool = False,
) -> bool:
    """Build an encrypted bundle from a JSON file of plaintext sessions.

    The input is either a list of sessions or an object with ``sessions`` and an
    optional ``search_index`` (term -> list of ids). A missing index is derived.
    """
    # Key problems abort the build before any input is read.
    key = read_key_file(key_file) if key_file else Settings.from_env().require_key()
    codec_id = codec_id_from_name(codec)
    if not codec_available(codec_id):
        raise BuildError(f"Codec '{codec}' is not available in this environment")
    try:
        with open(input_path, "r", encoding="utf-8") as fh:
            doc = _json.load(fh)
    except (OSError, ValueError) as exc:
        raise BuildError(f"Unable to read build input {input_path}: {exc}")
    if isinstance(doc, list):
        sessions, index = doc, None
    elif isinstance(doc, dict) and isinstance(doc.get("sessions"), list):
        sessions, index = doc["sessions"], doc.get("search_index")
        if index is not None and not isinstance(index, dict):
            raise BuildError("search_index must be an object mapping terms to session ids")
    else:
        raise BuildError("Build input must be a list of sessions or an object with a 'sessions' list")
    report = build_bundle(
        output,
        sessions,
        key,
        index,
        codec_id=codec_id,
        level=level,
        include_excerpts=include_excerpts,
        quiet=quiet,
    )
    print(
        f"Built {report.path}: {report.records_written} session(s), {report.records_skipped} skipped, "
        f"{report.index_terms} index term(s)"
    )
    return True


def cmd_unseal(bundle: str, output: str, *, key_file: Optional[str] = None, quiet: bool = False) -> bool:
    """Decrypt a bundle into a plaintext development database (wwdc.db)."""
    key = read_key_file(key_file) if key_file else Settings.from_env().require_key()
    with ArchiveReader(bundle, key=key) as reader:
        if reader.is_plaintext:
            raise InvalidDataFormat(f"{bundle} is already a plaintext database")
        plaintexts = {}
        records = reader.records()
        for n, rec in enumerate(records, 1):
            plaintexts[rec.id] = reader.require_content(rec)
            if not quiet and (n % 500 == 0 or n == len(records)):
                print(f" unsealing: {n:>6}/{len(records):<6}", flush=True)
        raw_len, _stored = write_plain_database(output, reader.archive, plaintexts)
    print(f"Plaintext database written to: {output} ({raw_len} bytes)")
    return True


def _exit_code_for(exc: BaseException) -> int:
    if isinstance(exc, (DataNotAvailable, InvalidDataFormat, CompressionNotSupported)):
        return EXIT_INVALID_DATA
    if isinstance(exc, (DecryptionFailed, KeyConfigError)):
        return EXIT_DECRYPTION
    if isinstance(exc, RealDataFailed):
        return EXIT_NO_RESULTS
    if isinstance(exc, SessionNotFound):
        return EXIT_NOT_FOUND
    if isinstance(exc, BuildError):
        return EXIT_BUILD_FAILED
    if isinstance(exc, ValueError):
        return EXIT_USAGE
    return EXIT_FAILURE


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="sessionvault",
        description="Offline search over the encrypted WWDC session bundle",
        epilog=(
            "Exit status 5 means the session bundle could not be found. "
            "Transcript content needs the shared key in SESSIONVAULT_KEY."
        ),
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    def _bundle_opts(p):
        p.add_argument("--bundle", help="Path to the bundle (default: search standard locations)")
        p.add_argument("--key-file", help="File containing the content key (default: $SESSIONVAULT_KEY)")

    ap_search = sub.add_parser("search", help="Search sessions (snippet + link per result)")
    ap_search.add_argument("query", help="Search query")
    ap_search.add_argument("--limit", type=int, default=DEFAULT_RESULT_LIMIT, help="Limit number of results")
    _bundle_opts(ap_search)

    ap_wwdc = sub.add_parser("wwdc", help="Search sessions with selectable verbosity and format")
    ap_wwdc.add_argument("query", help="Search query")
    ap_wwdc.add_argument("--limit", type=int, default=DEFAULT_RESULT_LIMIT, help="Limit number of results")
    ap_wwdc.add_argument(
        "--verbosity",
        choices=sorted(VERBOSITY_MODES),
        default="compact",
        help="compact (one line each), detailed (snippet + link), full (score, excerpts, transcript)",
    )
    ap_wwdc.add_argument("--format", choices=[FORMAT_MARKDOWN, FORMAT_JSON], default=FORMAT_MARKDOWN)
    ap_wwdc.add_argument("--jobs", "-j", type=int, help="Worker threads for transcript decryption (default $SESSIONVAULT_JOBS or 1)")
    ap_wwdc.add_argument(
        "--allow-placeholder",
        action="store_true",
        help="On load failure or no results, print placeholder results instead of failing",
    )
    _bundle_opts(ap_wwdc)

    ap_session = sub.add_parser("session", help="Show one session by id (e.g. wwdc2021-10183)")
    ap_session.add_argument("session_id", help="Session id")
    ap_session.add_argument("--mode", choices=[MODE_USER, MODE_AGENT], default=MODE_USER)
    ap_session.add_argument("--format", choices=[FORMAT_MARKDOWN, FORMAT_JSON], default=FORMAT_MARKDOWN)
    _bundle_opts(ap_session)

    ap_year = sub.add_parser("year", help="List sessions from one year")
    ap_year.add_argument("year", type=int, help="WWDC year, e.g. 2024")
    ap_year.add_argument("--limit", type=int, default=50, help="Limit number of sessions")
    ap_year.add_argument("--format", choices=[FORMAT_MARKDOWN, FORMAT_JSON], default=FORMAT_MARKDOWN)
    ap_year.add_argument("--bundle", help="Path to the bundle (default: search standard locations)")

    ap_stats = sub.add_parser("stats", help="Show bundle statistics")
    ap_stats.add_argument("--format", choices=[FORMAT_MARKDOWN, FORMAT_JSON], default=FORMAT_MARKDOWN)
    _bundle_opts(ap_stats)

    sub.add_parser("status", help="Show which bundle would be used")

    ap_build = sub.add_parser("build", help="Build an encrypted bundle from plaintext sessions (JSON)")
    ap_build.add_argument("input", help="Input JSON (list of sessions, or {sessions, search_index})")
    ap_build.add_argument("output", help="Output bundle path")
    ap_build.add_argument("--key-file", help="File containing the content key (default: $SESSIONVAULT_KEY)")
    ap_build.add_argument("--codec", choices=sorted(CODEC_NAMES.values()), default=CODEC_NAMES[DEFAULT_CODEC_ID])
    ap_build.add_argument("--level", type=int, help="Compression level for the selected codec")
    ap_build.add_argument(
        "--public-excerpts",
        action="store_true",
        help="Store a short plaintext excerpt per session so titles/excerpts are searchable without the key",
    )
    ap_build.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_unseal = sub.add_parser("unseal", help="Decrypt a bundle into a plaintext development database")
    ap_unseal.add_argument("bundle", help="Encrypted bundle path")
    ap_unseal.add_argument("output", help="Output path (conventionally ~/.sessionvault/wwdc.db)")
    ap_unseal.add_argument("--key-file", help="File containing the content key (default: $SESSIONVAULT_KEY)")
    ap_unseal.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "search":
            cmd_search(args.query, limit=args.limit, bundle=args.bundle, key_file=args.key_file)
        elif args.cmd == "wwdc":
            cmd_wwdc(
                args.query,
                limit=args.limit,
                verbosity=args.verbosity,
                fmt=args.format,
                bundle=args.bundle,
                key_file=args.key_file,
                jobs=args.jobs,
                allow_placeholder=args.allow_placeholder,
            )
        elif args.cmd == "session":
            cmd_session(args.session_id, mode=args.mode, fmt=args.format, bundle=args.bundle, key_file=args.key_file)
        elif args.cmd == "year":
            cmd_year(args.year, fmt=args.format, limit=args.limit, bundle=args.bundle)
        elif args.cmd == "stats":
            cmd_stats(fmt=args.format, bundle=args.bundle, key_file=args.key_file)
        elif args.cmd == "status":
            cmd_status()
        elif args.cmd == "build":
            cmd_build(
                args.input,
                args.output,
                key_file=args.key_file,
                codec=args.codec,
                level=args.level,
                include_excerpts=args.public_excerpts,
                quiet=args.quiet,
            )
        elif args.cmd == "unseal":
            cmd_unseal(args.bundle, args.output, key_file=args.key_file, quiet=args.quiet)
        else:
            raise RuntimeError("Unknown command")
    except RealDataFailed as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Hint: try related terms such as 'SwiftUI', 'Combine' or 'async'.", file=sys.stderr)
        sys.exit(EXIT_NO_RESULTS)
    except DecryptionFailed as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_DECRYPTION)
    except (VaultError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(_exit_code_for(e))
    except (OSError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
