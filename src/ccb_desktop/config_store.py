"""Bridge config document store.

Created: 2026-03-02

Reads and edits ``~/.ccb/config.json``, the file the bridge loads on start.
Every write loads the whole document, changes only what the operation is
about, and rewrites it, so keys this controller doesn't model (hooks,
logging, bindings, per-bot ``allowFrom``...) survive untouched.

Document shape (the parts we touch)::

    {
      "agents": {"default": "claude", "list": [{"id": ..., "name": ..., "workspace": ...}]},
      "channels": {
        "telegram": {"enabled": true, "bots": [{"id": "main", "botToken": "...", "dmPolicy": "pairing"}]},
        "discord":  {"enabled": true, "bots": [{"id": "main", "token": "...", "dmPolicy": "pairing"}]}
      }
    }

Invariants kept by every write:
- ``agents.list`` is never left empty.
- A channel key exists only while it has at least one bot with a token.

Design notes:
- Writes go to a temp file that is renamed over the original, so the bridge
  never reads a half-written document.
- The file holds bot tokens and is chmod 0600.
- An in-process lock serializes load/modify/write. Edits made by another
  process between our load and our rename are lost.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ccb_desktop.common import (
    CONFIG_FILE,
    DEFAULT_AGENT_ID,
    DEFAULT_AGENT_NAME,
    DEFAULT_DM_POLICY,
    DISCORD,
    LEGACY_BOT_ID,
    PLUGINS_FILE,
    TELEGRAM,
    TOKEN_FIELDS,
)
from ccb_desktop.models import AgentConfig, BotConfig, ConfigResponse, InstalledPlugin

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """A config operation failed; the message is ready to show the user."""


def _entry_id(entry: Any) -> str | None:
    if isinstance(entry, dict):
        value = entry.get("id")
        if isinstance(value, str):
            return value
    return None


class ConfigStore:
    """Load/modify/write access to the bridge config document."""

    def __init__(
        self,
        config_path: Path = CONFIG_FILE,
        plugins_path: Path = PLUGINS_FILE,
        home: Path | None = None,
    ) -> None:
        self.config_path = config_path
        self.plugins_path = plugins_path
        self.home = home or Path.home()
        self._lock = threading.Lock()

    # =========================================================================
    # File I/O Helpers
    # =========================================================================

    def check(self) -> bool:
        """True if the config document exists."""
        return self.config_path.exists()

    def read_document(self) -> dict[str, Any] | None:
        """Parse the whole document, or None if it doesn't exist yet."""
        if not self.config_path.exists():
            return None
        try:
            content = self.config_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Failed to read config: {e}") from e
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Failed to parse config: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("Failed to parse config: top level is not a JSON object")
        return data

    def _ensure_dir(self) -> None:
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Failed to create config dir: {e}") from e

    def _write_document(self, doc: dict[str, Any]) -> None:
        """Write the document atomically (temp file + rename)."""
        self._ensure_dir()
        temp_path = self.config_path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(doc, f, indent=2, ensure_ascii=False)
            os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)
            temp_path.replace(self.config_path)
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise ConfigError(f"Failed to write config: {e}") from e
        logger.debug("Wrote %s", self.config_path)

    def _default_agents(self) -> dict[str, Any]:
        return {
            "default": DEFAULT_AGENT_ID,
            "list": [
                {
                    "id": DEFAULT_AGENT_ID,
                    "name": DEFAULT_AGENT_NAME,
                    "workspace": str(self.home),
                }
            ],
        }

    @staticmethod
    def _agents_section(doc: dict[str, Any]) -> tuple[dict[str, Any], list[Any]]:
        """Return ``(doc["agents"], doc["agents"]["list"])``, creating them if absent."""
        agents = doc.setdefault("agents", {})
        if not isinstance(agents, dict):
            raise ConfigError("Invalid config structure")
        entries = agents.setdefault("list", [])
        if not isinstance(entries, list):
            raise ConfigError("Invalid config structure")
        return agents, entries

    # =========================================================================
    # Channel bots
    # =========================================================================

    def read(self) -> ConfigResponse:
        """Telegram and Discord bots currently configured."""
        doc = self.read_document()
        if doc is None:
            return ConfigResponse()

        channels = doc.get("channels")
        if not isinstance(channels, dict):
            channels = {}
        return ConfigResponse(
            telegram_bots=self._read_bots(channels, TELEGRAM),
            discord_bots=self._read_bots(channels, DISCORD),
        )

    @staticmethod
    def _read_bots(channels: dict[str, Any], channel: str) -> list[BotConfig]:
        section = channels.get(channel)
        if not isinstance(section, dict) or not isinstance(section.get("bots"), list):
            return []
        token_field = TOKEN_FIELDS[channel]
        bots = []
        for raw in section["bots"]:
            if not isinstance(raw, dict):
                continue
            bot_id = raw.get("id")
            token = raw.get(token_field)
            agent_id = raw.get("agentId")
            bots.append(
                BotConfig(
                    id=bot_id if isinstance(bot_id, str) else LEGACY_BOT_ID,
                    token=token if isinstance(token, str) else "",
                    agent_id=agent_id if isinstance(agent_id, str) else None,
                )
            )
        return bots

    def save_channel_bots(
        self,
        telegram_bots: Sequence[BotConfig] | None = None,
        discord_bots: Sequence[BotConfig] | None = None,
        telegram_token: str | None = None,
        discord_token: str | None = None,
    ) -> None:
        """Replace the bot list of each channel that was given.

        For each channel: an explicit bot list wins (entries with an empty
        token are dropped); otherwise a legacy single token becomes one bot
        with id ``main``; otherwise the channel is left alone. A channel
        that ends up with no bots is removed from the document.
        """
        with self._lock:
            self._ensure_dir()
            doc = self.read_document()
            if doc is None:
                doc = {"agents": self._default_agents(), "channels": {}}

            channels = doc.setdefault("channels", {})
            if not isinstance(channels, dict):
                raise ConfigError("Invalid config structure")

            for channel, bots, token in (
                (TELEGRAM, telegram_bots, telegram_token),
                (DISCORD, discord_bots, discord_token),
            ):
                if bots is None and token is None:
                    continue
                if bots is None:
                    bots = [BotConfig(id=LEGACY_BOT_ID, token=token)] if token else []
                self._apply_bots(channels, channel, bots)

            agents = doc.get("agents")
            entries = agents.get("list") if isinstance(agents, dict) else None
            if not isinstance(entries, list) or not entries:
                logger.info("No agents configured, adding default agent '%s'", DEFAULT_AGENT_ID)
                merged = agents if isinstance(agents, dict) else {}
                merged.update(self._default_agents())
                doc["agents"] = merged

            self._write_document(doc)

    @staticmethod
    def _apply_bots(channels: dict[str, Any], channel: str, bots: Sequence[BotConfig]) -> None:
        section = channels.get(channel)
        if not isinstance(section, dict):
            section = {}

        previous = {}
        if isinstance(section.get("bots"), list):
            previous = {_entry_id(b): b for b in section["bots"] if _entry_id(b) is not None}

        token_field = TOKEN_FIELDS[channel]
        entries = []
        for bot in bots:
            if not bot.token:
                continue
            # Keep keys we don't manage (allowFrom, applicationId...) for bots that survive
            entry = dict(previous.get(bot.id, {}))
            entry.pop("agentId", None)
            entry.update({"id": bot.id, token_field: bot.token, "dmPolicy": DEFAULT_DM_POLICY})
            if bot.agent_id:
                entry["agentId"] = bot.agent_id
            entries.append(entry)

        if not entries:
            if channels.pop(channel, None) is not None:
                logger.info("Removed %s channel (no bots with a token)", channel)
            return

        section["enabled"] = True
        section["bots"] = entries
        channels[channel] = section

    # =========================================================================
    # Agents
    # =========================================================================

    def get_agents(self) -> list[AgentConfig]:
        """Agents in document order. Entries that don't parse are skipped."""
        doc = self.read_document()
        if doc is None:
            return []
        agents = doc.get("agents")
        entries = agents.get("list") if isinstance(agents, dict) else None
        if not isinstance(entries, list):
            return []

        result = []
        for entry in entries:
            try:
                result.append(AgentConfig.model_validate(entry))
            except ValidationError as e:
                logger.warning("Skipping invalid agent entry %r: %s", _entry_id(entry), e)
        return result

    def add_agent(self, agent: AgentConfig) -> None:
        with self._lock:
            doc = self.read_document()
            if doc is None:
                doc = {"agents": {"list": []}, "channels": {}}
            agents, entries = self._agents_section(doc)

            if any(_entry_id(e) == agent.id for e in entries):
                raise ConfigError(f"Agent '{agent.id}' already exists")

            entries.append(agent.to_wire())
            agents.setdefault("default", agent.id)
            self._write_document(doc)
        logger.info("Added agent '%s'", agent.id)

    def update_agent(self, agent: AgentConfig) -> None:
        """Replace an agent in place, keeping its position in the list."""
        with self._lock:
            doc = self.read_document()
            if doc is None:
                raise ConfigError("Config file not found")
            _, entries = self._agents_section(doc)

            for i, entry in enumerate(entries):
                if _entry_id(entry) == agent.id:
                    known = AgentConfig.wire_keys()
                    extras = {k: v for k, v in entry.items() if k not in known}
                    entries[i] = {**agent.to_wire(), **extras}
                    break
            else:
                raise ConfigError(f"Agent '{agent.id}' not found")

            self._write_document(doc)
        logger.info("Updated agent '%s'", agent.id)

    def remove_agent(self, agent_id: str) -> None:
        with self._lock:
            doc = self.read_document()
            if doc is None:
                raise ConfigError("Config file not found")
            agents, entries = self._agents_section(doc)

            if len(entries) <= 1:
                raise ConfigError("Cannot remove the last agent")

            remaining = [e for e in entries if _entry_id(e) != agent_id]
            if len(remaining) == len(entries):
                raise ConfigError(f"Agent '{agent_id}' not found")
            if not remaining:
                # Duplicate ids: every entry matched
                raise ConfigError("Cannot remove the last agent")

            entries[:] = remaining
            if agents.get("default") == agent_id:
                agents["default"] = _entry_id(remaining[0])
            self._write_document(doc)
        logger.info("Removed agent '%s'", agent_id)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> list[str]:
        """Problems that would stop the bridge from loading the document."""
        doc = self.read_document()
        if doc is None:
            return ["Config file not found"]

        problems: list[str] = []
        agents = doc.get("agents")
        entries = agents.get("list") if isinstance(agents, dict) else None
        if not isinstance(entries, list) or not entries:
            problems.append("agents.list must contain at least one agent")
            entries = []

        seen: set[str] = set()
        for i, entry in enumerate(entries):
            try:
                agent = AgentConfig.model_validate(entry)
            except ValidationError as e:
                problems.append(f"agents.list[{i}]: {e.error_count()} invalid field(s)")
                continue
            if agent.id in seen:
                problems.append(f"agents.list[{i}]: duplicate agent id '{agent.id}'")
            seen.add(agent.id)

        default = agents.get("default") if isinstance(agents, dict) else None
        if default is not None and default not in seen:
            problems.append(f"agents.default: unknown agent '{default}'")

        channels = doc.get("channels")
        if channels is not None and not isinstance(channels, dict):
            problems.append("channels must be an object")
            channels = {}
        for channel in (TELEGRAM, DISCORD):
            section = (channels or {}).get(channel)
            if not isinstance(section, dict):
                continue
            token_field = TOKEN_FIELDS[channel]
            bots = section.get("bots") if isinstance(section.get("bots"), list) else []
            usable = 0
            for i, bot in enumerate(bots):
                if isinstance(bot, dict) and bot.get(token_field):
                    usable += 1
                else:
                    problems.append(f"channels.{channel}.bots[{i}]: missing {token_field}")
            if section.get("enabled") and not usable and not section.get(token_field):
                problems.append(f"channels.{channel}: enabled but no bot has a {token_field}")
        return problems

    # =========================================================================
    # Installed plugins (read-only)
    # =========================================================================

    def list_installed_plugins(self) -> list[InstalledPlugin]:
        """Installed plugins, one per name (most recent install), sorted by name."""
        if not self.plugins_path.exists():
            return []
        try:
            content = self.plugins_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Failed to read plugins file: {e}") from e
        try:
            data = json.loads(content)
            registry = data["plugins"]
            plugins = []
            for name, installs in registry.items():
                if not installs:
                    continue
                latest = installs[0]
                plugins.append(
                    InstalledPlugin(
                        name=name,
                        path=latest["installPath"],
                        version=latest["version"],
                    )
                )
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError, ValidationError) as e:
            raise ConfigError(f"Failed to parse plugins file: {e}") from e

        plugins.sort(key=lambda p: p.name)
        return plugins
