from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

from .constants import (
    BUNDLE_NAME,
    BUNDLE_RESOURCE_DIR,
    ENV_HOME,
    EXIT_MISSING_BUNDLE,
    PLAIN_DB_NAME,
    USER_DIR_NAME,
)


RELEASES_URL = "https://github.com/Smith-Tools/sosumi/releases/latest/download"
_RULE = "-" * 70


def _executable_dir() -> Path:
    # Frozen (self-contained) builds ship DATA/ next to the executable; otherwise
    # the package directory plays that role.
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def default_home() -> Path:
    value = os.environ.get(ENV_HOME)
    if value:
        return Path(value).expanduser()
    return Path.home() / USER_DIR_NAME


class BundleLocator:
    """Finds the session bundle. The first existing candidate wins:

    1. ``<home>/wwdc.db``                    plaintext development database
    2. ``<home>/wwdc_bundle.encrypted``
    3. ``<cwd>/wwdc_bundle.encrypted``
    4. ``<executable dir>/DATA/wwdc_bundle.encrypted``
    """

    def __init__(self, home: Optional[Path] = None, cwd: Optional[Path] = None, exe_dir: Optional[Path] = None):
        self.home = Path(home) if home is not None else default_home()
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.exe_dir = Path(exe_dir) if exe_dir is not None else _executable_dir()

    def candidates(self) -> List[Path]:
        return [
            self.home / PLAIN_DB_NAME,
            self.home / BUNDLE_NAME,
            self.cwd / BUNDLE_NAME,
            self.exe_dir / BUNDLE_RESOURCE_DIR / BUNDLE_NAME,
        ]

    def locate(self) -> Optional[Path]:
        for path in self.candidates():
            if path.is_file():
                return path
        return None

    def exists(self) -> bool:
        return self.locate() is not None


def missing_bundle_message(command: str, checked: List[Path]) -> str:
    lines = [
        "ERROR: WWDC TRANSCRIPT BUNDLE NOT FOUND",
        "",
        f"The encrypted transcript bundle ({BUNDLE_NAME}) is required for search.",
        "Placeholder results are disabled so that missing data is never mistaken for real results.",
        "",
        _RULE,
        "",
        "HOW TO FIX (choose one option):",
        "",
        "OPTION 1: Download the bundle into your home directory (recommended)",
        f"   $ mkdir -p ~/{USER_DIR_NAME}",
        f"   $ curl -L -o ~/{USER_DIR_NAME}/{BUNDLE_NAME} {RELEASES_URL}/{BUNDLE_NAME}",
        f"   $ {command} \"SwiftUI\"",
        "",
        "OPTION 2: Place the bundle in the current directory",
        f"   $ curl -L -O {RELEASES_URL}/{BUNDLE_NAME}",
        f"   $ {command} \"SwiftUI\"",
        "",
        "OPTION 3: Point at an existing bundle explicitly",
        f"   $ export {ENV_HOME}=/path/to/dir/containing/bundle",
        f"   $ {command} \"SwiftUI\"",
        "",
        _RULE,
        "",
        "LOCATIONS CHECKED (in order):",
    ]
    lines += [f"  - {p}" for p in checked]
    lines += [
        "",
        "TROUBLESHOOTING:",
        f"  - File present but not found? Names are case-sensitive: {BUNDLE_NAME} or {PLAIN_DB_NAME}",
        "  - Content searches also need the shared key in SESSIONVAULT_KEY",
    ]
    return "\n".join(lines)


def present_missing_bundle(command: str = "sessionvault search", checked: Optional[List[Path]] = None) -> NoReturn:
    """Print remediation guidance to stderr and exit with EXIT_MISSING_BUNDLE."""
    if checked is None:
        checked = BundleLocator().candidates()
    print(missing_bundle_message(command, checked), file=sys.stderr, flush=True)
    sys.exit(EXIT_MISSING_BUNDLE)


def require_bundle(
    command: str = "sessionvault search",
    *,
    explicit: Optional[str] = None,
    locator: Optional[BundleLocator] = None,
) -> Path:
    """Return the bundle path or terminate the process with exit status 5."""
    if explicit:
        path = Path(explicit).expanduser()
        if path.is_file():
            return path
        present_missing_bundle(command, [path])
    loc = locator or BundleLocator()
    found = loc.locate()
    if found is None:
        present_missing_bundle(command, loc.candidates())
    return found
