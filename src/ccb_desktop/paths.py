# CCB Desktop: Search Path Builder
# GUI sessions (tray apps, login items) usually don't inherit the login
# shell's PATH, so node-based tools installed through nvm/volta/homebrew are
# invisible. This rebuilds a PATH that can find them.
# Created: 2026-03-02

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _fixed_dirs(home: Path) -> list[Path]:
    return [
        home / ".volta" / "bin",
        home / ".npm" / "bin",
        home / ".local" / "bin",
        Path("/opt/homebrew/bin"),
        Path("/usr/local/bin"),
        Path("/usr/bin"),
    ]


def nvm_bin_dirs(home: Path) -> list[Path]:
    """Bin directories of every nvm-installed node, newest first.

    "Newest" is a plain descending string sort of the version directory
    names, so v9.x sorts above v18.x.
    """
    versions_root = home / ".nvm" / "versions" / "node"
    try:
        entries = [p for p in versions_root.iterdir() if p.is_dir()]
    except OSError:
        return []
    dirs = [str(p / "bin") for p in entries]
    dirs.sort(reverse=True)
    return [Path(d) for d in dirs]


def build_search_path(home: Path | None = None, inherited: str | None = None) -> str:
    """Build a PATH string for spawning the bridge.

    Order: nvm versions (newest first), well-known install dirs, then the
    PATH this process inherited. Missing directories are skipped.

    Args:
        home: Home directory to resolve user-local dirs against.
            Defaults to ``Path.home()``.
        inherited: PATH to append last. Defaults to ``os.environ["PATH"]``.
    """
    if home is None:
        home = Path.home()
    if inherited is None:
        inherited = os.environ.get("PATH", "")

    parts: list[str] = []
    for d in nvm_bin_dirs(home) + _fixed_dirs(home):
        if d.is_dir() and str(d) not in parts:
            parts.append(str(d))

    if inherited:
        parts.append(inherited)

    path = os.pathsep.join(parts)
    logger.debug("Bridge search path: %s", path)
    return path
