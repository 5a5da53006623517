# CCB Desktop: Bridge Launch Strategies
# Ordered ways of finding and spawning `ccb start`:
#   1. `ccb` on the resolved PATH
#   2. `npx cc-bridge start`
#   3. known global-install locations (nvm, volta, npm prefix, homebrew)
# The first strategy that spawns a process wins.
# Created: 2026-03-02

from __future__ import annotations

import asyncio
import glob
import logging
import os
import platform
import shutil
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from ccb_desktop.common import (
    BRIDGE_COMMAND,
    BRIDGE_NPM_PACKAGE,
    BRIDGE_START_ARGS,
    PACKAGE_RUNNER,
)

logger = logging.getLogger(__name__)


class LaunchStrategy(Protocol):
    """One way of locating the bridge executable."""

    name: str

    def commands(self, search_path: str) -> list[list[str]]:
        """Candidate argv lists to try, in order. Empty if nothing matches."""
        ...


@dataclass(frozen=True)
class CommandOnPath:
    """Run a command resolved against the search path."""

    name: str
    command: str
    args: tuple[str, ...] = ()

    def commands(self, search_path: str) -> list[list[str]]:
        exe = shutil.which(self.command, path=search_path)
        if not exe:
            return []
        return [[exe, *self.args]]


@dataclass(frozen=True)
class GlobbedExecutables:
    """Executables matching a list of glob patterns, tried in pattern order."""

    name: str
    patterns: tuple[str, ...]
    args: tuple[str, ...] = ()

    def commands(self, search_path: str) -> list[list[str]]:
        found: list[list[str]] = []
        for pattern in self.patterns:
            # Newest nvm version first, same heuristic as the search path
            for match in sorted(glob.glob(pattern), reverse=True):
                if os.path.isfile(match) and os.access(match, os.X_OK):
                    found.append([match, *self.args])
        return found


def global_install_patterns(home: Path | None = None) -> tuple[str, ...]:
    """Glob patterns where a global `npm install -g` may have put the bridge."""
    if home is None:
        home = Path.home()
    return (
        str(home / ".nvm" / "versions" / "node" / "*" / "bin" / BRIDGE_COMMAND),
        str(home / ".volta" / "bin" / BRIDGE_COMMAND),
        str(home / ".npm" / "bin" / BRIDGE_COMMAND),
        f"/usr/local/bin/{BRIDGE_COMMAND}",
        f"/opt/homebrew/bin/{BRIDGE_COMMAND}",
    )


def default_strategies(home: Path | None = None) -> list[LaunchStrategy]:
    """The standard fallback chain."""
    return [
        CommandOnPath("path", BRIDGE_COMMAND, BRIDGE_START_ARGS),
        CommandOnPath("npx", PACKAGE_RUNNER, (BRIDGE_NPM_PACKAGE, *BRIDGE_START_ARGS)),
        GlobbedExecutables("global-install", global_install_patterns(home), BRIDGE_START_ARGS),
    ]


@dataclass
class LaunchedBridge:
    """A bridge process spawned by one of the strategies."""

    process: asyncio.subprocess.Process
    argv: list[str]
    strategy: str
    attempts: list[str] = field(default_factory=list)


def _creation_flags() -> int:
    """Windows-specific process creation flags."""
    if platform.system() == "Windows":
        # CREATE_NO_WINDOW: no console window for the bridge
        return 0x08000000
    return 0


async def spawn(argv: Sequence[str], search_path: str) -> asyncio.subprocess.Process:
    """Spawn one candidate with stdout/stderr captured as pipes."""
    env = dict(os.environ)
    env["PATH"] = search_path
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
        creationflags=_creation_flags(),
    )


async def launch_bridge(
    search_path: str,
    strategies: Sequence[LaunchStrategy] | None = None,
) -> LaunchedBridge | None:
    """Try each strategy in order and return the first spawned bridge.

    A candidate that fails to spawn is logged and skipped. Returns None
    only when every candidate of every strategy has been tried.
    """
    if strategies is None:
        strategies = default_strategies()

    attempts: list[str] = []
    for strategy in strategies:
        candidates = strategy.commands(search_path)
        if not candidates:
            logger.debug("Launch strategy %s found nothing", strategy.name)
            attempts.append(f"{strategy.name}: not found")
            continue
        for argv in candidates:
            try:
                process = await spawn(argv, search_path)
            except OSError as exc:
                logger.debug("Launch strategy %s failed for %s: %s", strategy.name, argv[0], exc)
                attempts.append(f"{strategy.name}: {argv[0]}: {exc}")
                continue
            logger.info("Bridge spawned via %s: %s (pid %s)", strategy.name, argv, process.pid)
            return LaunchedBridge(
                process=process,
                argv=list(argv),
                strategy=strategy.name,
                attempts=attempts,
            )

    logger.warning("No launch strategy could start the bridge: %s", "; ".join(attempts))
    return None
