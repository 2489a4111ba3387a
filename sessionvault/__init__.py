"""
sessionvault: offline search over an encrypted bundle of WWDC session transcripts.

Features:

- Single-file bundle: fixed header + compressed JSON envelope (deflate, optional zstd).
- Per-session AES-256-GCM transcript encryption with SHA-256 plaintext checksums.
- Reversible title obfuscation so titles stay displayable without the key.
- Deterministic bundle location with an actionable failure (exit status 5).
- Index-accelerated substring search with synonyms, heuristic scoring, excerpts
  and time segments; decryption is lazy and per candidate.
- Markdown and JSON rendering in user (snippet + link) and agent (full transcript) modes.

Security note: one key is shared by every installation. It deters casual copying
of the transcripts; it does not protect them from anyone holding the key.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "writer",
    "reader",
    "search",
    "formatter",
    "locator",
    "encryption",
]

# Importable programmatic API is available via sessionvault.writer/sessionvault.reader/
# sessionvault.search and the CLI functions in sessionvault.cli (cmd_wwdc, cmd_build, ...).
