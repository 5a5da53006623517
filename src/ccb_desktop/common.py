# CCB Desktop: Shared Constants & Helpers
# Paths, bridge command names and the control API address used by
# paths.py, launch.py, supervisor.py, control_api.py and config_store.py.
# Created: 2026-03-02

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

# ── Paths ──────────────────────────────────────────────────────────────
CCB_HOME = Path.home() / ".ccb"
CONFIG_FILE = CCB_HOME / "config.json"
LOG_DIR = CCB_HOME / "logs"
PLUGINS_FILE = Path.home() / ".claude" / "plugins" / "installed_plugins.json"

# ── Bridge metadata ────────────────────────────────────────────────────
BRIDGE_COMMAND = "ccb"
BRIDGE_START_ARGS = ("start",)
BRIDGE_NPM_PACKAGE = "cc-bridge"
BRIDGE_GLOBAL_PACKAGE = "claude-code-bridge"
PACKAGE_RUNNER = "npx"
# Matched against full command lines when cleaning up bridges we did not spawn
BRIDGE_PROCESS_PATTERN = "ccb start"

INSTALL_HINT = (
    f"Failed to start: {BRIDGE_COMMAND} command not found. "
    f"Please install {BRIDGE_COMMAND} globally with: npm install -g {BRIDGE_GLOBAL_PACKAGE}"
)

# ── Control API ────────────────────────────────────────────────────────
CONTROL_API_URL = "http://127.0.0.1:38792"

# ── Channels ───────────────────────────────────────────────────────────
TELEGRAM = "telegram"
DISCORD = "discord"

# The bridge names the credential differently per channel
TOKEN_FIELDS = {
    TELEGRAM: "botToken",
    DISCORD: "token",
}
DEFAULT_DM_POLICY = "pairing"
LEGACY_BOT_ID = "main"

DEFAULT_AGENT_ID = "claude"
DEFAULT_AGENT_NAME = "Claude"

# ── Callback types ─────────────────────────────────────────────────────
StatusCallback = Callable[[str], None]


def noop_status(msg: str) -> None:
    """No-op status callback."""
