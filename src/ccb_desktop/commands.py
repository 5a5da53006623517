# CCB Desktop: Command Surface
# The fixed set of operations a UI (tray menu, window, CLI) calls. Each one
# returns a CommandResult holding either a value or a human-readable error;
# nothing raises across this boundary.
# Created: 2026-03-02

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from ccb_desktop.common import StatusCallback
from ccb_desktop.config import Settings, get_settings
from ccb_desktop.config_store import ConfigError, ConfigStore
from ccb_desktop.control_api import ControlApiClient, ControlApiError
from ccb_desktop.models import AgentConfig, BotConfig
from ccb_desktop.supervisor import BridgeNotFoundError, ServiceState, ServiceSupervisor

logger = logging.getLogger(__name__)

_EXPECTED = (ConfigError, ControlApiError, BridgeNotFoundError)


@dataclass
class CommandResult:
    """Outcome of one command."""

    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _describe_validation(exc: ValidationError, what: str) -> str:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or what}: {err['msg']}" for err in exc.errors()
    )
    return f"Invalid {what}: {details}"


def _call(fn: Callable[[], Any], what: str = "input", returns: Any = None) -> CommandResult:
    try:
        value = fn()
    except _EXPECTED as e:
        return CommandResult(error=str(e))
    except ValidationError as e:
        return CommandResult(error=_describe_validation(e, what))
    except Exception as e:
        logger.exception("Command failed")
        return CommandResult(error=f"Unexpected error: {e}")
    return CommandResult(value=value if returns is None else returns)


async def _acall(awaitable: Awaitable[Any]) -> CommandResult:
    try:
        value = await awaitable
    except _EXPECTED as e:
        return CommandResult(error=str(e))
    except Exception as e:
        logger.exception("Command failed")
        return CommandResult(error=f"Unexpected error: {e}")
    return CommandResult(value=value)


def _as_agent(agent: AgentConfig | Mapping[str, Any]) -> AgentConfig:
    if isinstance(agent, AgentConfig):
        return agent
    return AgentConfig.model_validate(agent)


def _as_bots(bots: Sequence[BotConfig | Mapping[str, Any]] | None) -> list[BotConfig] | None:
    if bots is None:
        return None
    return [b if isinstance(b, BotConfig) else BotConfig.model_validate(b) for b in bots]


class Commands:
    """Operations exposed to the UI, wired to one supervisor/client/store."""

    def __init__(
        self,
        supervisor: ServiceSupervisor,
        client: ControlApiClient,
        store: ConfigStore,
    ) -> None:
        self.supervisor = supervisor
        self.client = client
        self.store = store

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        on_status: StatusCallback | None = None,
    ) -> Commands:
        """Build the standard wiring from settings."""
        settings = settings or get_settings()
        client = ControlApiClient(settings.api_url, timeout=settings.request_timeout)
        supervisor = ServiceSupervisor(
            client,
            ServiceState(log_limit=settings.log_buffer_size),
            start_grace=settings.start_grace_seconds,
            stop_grace=settings.stop_grace_seconds,
            probe_timeout=settings.status_probe_timeout,
            on_status=on_status,
        )
        store = ConfigStore(settings.config_path, settings.plugins_path)
        return cls(supervisor, client, store)

    # ── Service lifecycle ──────────────────────────────────────────────

    async def start_service(self) -> CommandResult:
        return await _acall(self.supervisor.start())

    async def stop_service(self) -> CommandResult:
        return await _acall(self.supervisor.stop())

    def is_service_running(self) -> CommandResult:
        return CommandResult(value=self.supervisor.is_running())

    def get_logs(self) -> CommandResult:
        return CommandResult(value=self.supervisor.get_logs())

    def clear_logs(self) -> CommandResult:
        self.supervisor.clear_logs()
        return CommandResult(value=True)

    # ── Control API ────────────────────────────────────────────────────

    async def get_status(self) -> CommandResult:
        return await _acall(self.client.status())

    async def get_pairings(self) -> CommandResult:
        return await _acall(self.client.pairings())

    async def approve_pairing(self, code: str) -> CommandResult:
        return await _acall(self.client.approve_pairing(code))

    async def deny_pairing(self, code: str) -> CommandResult:
        return await _acall(self.client.deny_pairing(code))

    # ── Config document ────────────────────────────────────────────────

    def check_config(self) -> CommandResult:
        return CommandResult(value=self.store.check())

    def read_config(self) -> CommandResult:
        return _call(self.store.read)

    def save_config(
        self,
        telegram_bots: Sequence[BotConfig | Mapping[str, Any]] | None = None,
        discord_bots: Sequence[BotConfig | Mapping[str, Any]] | None = None,
        telegram_token: str | None = None,
        discord_token: str | None = None,
    ) -> CommandResult:
        return _call(
            lambda: self.store.save_channel_bots(
                telegram_bots=_as_bots(telegram_bots),
                discord_bots=_as_bots(discord_bots),
                telegram_token=telegram_token,
                discord_token=discord_token,
            ),
            what="bot",
            returns=True,
        )

    def validate_config(self) -> CommandResult:
        return _call(self.store.validate)

    def get_agents(self) -> CommandResult:
        return _call(self.store.get_agents)

    def add_agent(self, agent: AgentConfig | Mapping[str, Any]) -> CommandResult:
        return _call(lambda: self.store.add_agent(_as_agent(agent)), what="agent", returns=True)

    def update_agent(self, agent: AgentConfig | Mapping[str, Any]) -> CommandResult:
        return _call(lambda: self.store.update_agent(_as_agent(agent)), what="agent", returns=True)

    def remove_agent(self, agent_id: str) -> CommandResult:
        return _call(lambda: self.store.remove_agent(agent_id), returns=True)

    def get_installed_plugins(self) -> CommandResult:
        return _call(self.store.list_installed_plugins)
