"""Environment-driven settings and key provisioning.

The shared content key is never built into the package. It is provided at
build time (and to clients that need transcript content) through
``SESSIONVAULT_KEY`` or a key file, either as 32 raw UTF-8 bytes or as 64 hex
characters.
"""

from __future__ import annotations

import os
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .constants import ENV_HOME, ENV_JOBS, ENV_KEY, KEY_SIZE, USER_DIR_NAME
from .errors import KeyConfigError


def parse_key(value: str) -> bytes:
    """Decode a key given as 64 hex characters or 32 raw UTF-8 bytes."""
    text = value.strip()
    if len(text) == KEY_SIZE * 2 and all(c in string.hexdigits for c in text):
        return bytes.fromhex(text)
    raw = text.encode("utf-8")
    if len(raw) != KEY_SIZE:
        raise KeyConfigError(
            f"Key must be exactly {KEY_SIZE} bytes or {KEY_SIZE * 2} hex characters (got {len(raw)} bytes)"
        )
    return raw


def read_key_file(path: str) -> bytes:
    try:
        with open(path, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        raise KeyConfigError(f"Unable to read key file {path}: {exc}")
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        raise KeyConfigError(f"Key file {path} is not UTF-8 text (expected 32 bytes or 64 hex characters)")
    return parse_key(text)


@dataclass
class Settings:
    home: Path
    key: Optional[bytes] = field(default=None, repr=False)
    jobs: int = 1

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        home_value = env.get(ENV_HOME)
        home = Path(home_value).expanduser() if home_value else Path.home() / USER_DIR_NAME
        key_value = env.get(ENV_KEY)
        key = parse_key(key_value) if key_value else None
        jobs_value = env.get(ENV_JOBS, "1")
        try:
            jobs = max(1, int(jobs_value))
        except ValueError:
            raise ValueError(f"{ENV_JOBS} must be an integer, got {jobs_value!r}")
        return cls(home=home, key=key, jobs=jobs)

    def require_key(self) -> bytes:
        if self.key is None:
            raise KeyConfigError(
                f"No content key configured. Set {ENV_KEY} (32 bytes or 64 hex characters) or pass --key-file."
            )
        return self.key
