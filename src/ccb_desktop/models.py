# CCB Desktop: Data Models
# Wire shapes of the bridge's control API responses and of the entries in
# the bridge config document. Field names are snake_case in Python and
# camelCase on the wire.
# Created: 2026-03-02

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for models that (de)serialize with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, leaving out unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Control API ────────────────────────────────────────────────────────


class BotInfo(WireModel):
    id: str
    username: str | None = None
    agent_id: str | None = None


class ChannelStatus(WireModel):
    name: str
    enabled: bool = False
    connected: bool = False
    bot_count: int = 0
    bots: list[BotInfo] = Field(default_factory=list)


class SessionStats(WireModel):
    active: int = 0
    total: int = 0


class PairingStats(WireModel):
    pending: int = 0


class BridgeStatus(WireModel):
    """Snapshot returned by ``GET /status``."""

    running: bool = False
    uptime: int = 0  # milliseconds since the bridge started
    channels: list[ChannelStatus] = Field(default_factory=list)
    sessions: SessionStats = Field(default_factory=SessionStats)
    pairings: PairingStats = Field(default_factory=PairingStats)

    @property
    def uptime_seconds(self) -> int:
        return self.uptime // 1000


class UserInfo(WireModel):
    id: str
    username: str | None = None
    display_name: str | None = None
    channel: str


class PairingRequest(WireModel):
    """A chat user waiting for operator approval."""

    code: str
    chat_key: str
    user_info: UserInfo
    created_at: str
    expires_at: str


class SessionInfo(WireModel):
    id: str
    chat_key: str
    session_name: str | None = None
    agent_id: str | None = None
    status: str
    created_at: str
    last_active: str


# ── Config document ────────────────────────────────────────────────────


class BotConfig(WireModel):
    """One bot credential as the UI sees it.

    On disk the token lives under ``botToken`` (Telegram) or ``token``
    (Discord); ``config_store`` does that mapping.
    """

    id: str
    token: str
    agent_id: str | None = None

    def to_wire(self) -> dict:
        # agentId is always present for the UI, even when null
        return self.model_dump(by_alias=True)


class PluginConfig(WireModel):
    type: str
    path: str


class McpServerConfig(WireModel):
    name: str
    command: str | None = None
    args: list[str] | None = None
    env: dict[str, str] | None = None
    type: str | None = None
    url: str | None = None


class AgentConfig(WireModel):
    """An agent definition in ``agents.list``."""

    id: str = Field(min_length=1)
    name: str
    workspace: str
    model: str | None = None
    system_prompt: str | None = None
    max_turns: int | None = Field(default=None, gt=0)
    permission_mode: str | None = None
    tools: list[str] | None = None
    disallowed_tools: list[str] | None = None
    allowed_tools: list[str] | None = None
    skills: list[str] | None = None
    plugins: list[PluginConfig] | None = None
    mcp_servers: list[McpServerConfig] | None = None

    @classmethod
    def wire_keys(cls) -> set[str]:
        """camelCase keys this model owns inside an agent entry."""
        return {to_camel(name) for name in cls.model_fields}


class ConfigResponse(WireModel):
    """Channel bots as read back from the config document."""

    telegram_bots: list[BotConfig] = Field(default_factory=list)
    discord_bots: list[BotConfig] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return {
            "telegramBots": [b.to_wire() for b in self.telegram_bots],
            "discordBots": [b.to_wire() for b in self.discord_bots],
        }


class InstalledPlugin(WireModel):
    name: str
    path: str
    version: str
