# CCB Desktop: Entry Point
# Command-line front end over the command surface:
#   ccb-desktop run              start the bridge and keep it up until Ctrl+C
#   ccb-desktop status|pairings  query the running bridge
#   ccb-desktop config ...       inspect or edit ~/.ccb/config.json
#   ccb-desktop agents ...       manage agents
# Created: 2026-03-02

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any

from pydantic import BaseModel

from ccb_desktop import __version__
from ccb_desktop.commands import CommandResult, Commands
from ccb_desktop.common import LOG_DIR
from ccb_desktop.models import AgentConfig, ConfigResponse

logger = logging.getLogger("ccb_desktop.cli")

LOG_FILE = LOG_DIR / "desktop.log"


def _setup_logging(verbose: bool) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(LOG_FILE, encoding="utf-8"))
    except OSError:
        pass
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.to_wire() if hasattr(value, "to_wire") else value.model_dump(by_alias=True)
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def _emit(result: CommandResult) -> int:
    """Print a command result as JSON. Returns the process exit code."""
    if not result.ok:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    print(json.dumps(_to_jsonable(result.value), indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ccb-desktop", description="CCB bridge controller")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Start the bridge and keep it running until Ctrl+C")
    sub.add_parser("stop", help="Stop a running bridge")
    sub.add_parser("status", help="Show bridge status")
    sub.add_parser("pairings", help="List pending pairing requests")
    for action in ("approve", "deny"):
        p = sub.add_parser(action, help=f"{action.capitalize()} a pairing request")
        p.add_argument("code")
    sub.add_parser("plugins", help="List installed plugins")

    config = sub.add_parser("config", help="Inspect or edit the bridge config")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    config_sub.add_parser("show", help="Show configured bots")
    config_sub.add_parser("check", help="Whether the config file exists")
    config_sub.add_parser("validate", help="List problems the bridge would reject")
    set_bots = config_sub.add_parser("set-bots", help="Set single-bot tokens per channel")
    set_bots.add_argument("--telegram-token", default=None, help="Empty string removes Telegram")
    set_bots.add_argument("--discord-token", default=None, help="Empty string removes Discord")

    agents = sub.add_parser("agents", help="Manage agents")
    agents_sub = agents.add_subparsers(dest="agents_command", required=True)
    agents_sub.add_parser("list", help="List agents")
    for action in ("add", "update"):
        p = agents_sub.add_parser(action, help=f"{action.capitalize()} an agent")
        p.add_argument("id")
        p.add_argument("--name", required=action == "add")
        p.add_argument("--workspace", required=action == "add")
        p.add_argument("--model")
        p.add_argument("--system-prompt")
        p.add_argument("--max-turns", type=int)
        p.add_argument("--permission-mode")
    remove = agents_sub.add_parser("remove", help="Remove an agent")
    remove.add_argument("id")
    return parser


def _agent_from_args(args: argparse.Namespace, base: AgentConfig | None = None) -> dict[str, Any]:
    """Agent payload from CLI flags, layered over an existing agent for updates."""
    data = base.model_dump(exclude_none=True) if base else {}
    data["id"] = args.id
    for field in ("name", "workspace", "model", "system_prompt", "max_turns", "permission_mode"):
        value = getattr(args, field)
        if value is not None:
            data[field] = value
    return data


def _agents(commands: Commands, args: argparse.Namespace) -> CommandResult:
    if args.agents_command == "list":
        return commands.get_agents()
    if args.agents_command == "remove":
        return commands.remove_agent(args.id)
    if args.agents_command == "add":
        return commands.add_agent(_agent_from_args(args))

    current = commands.get_agents()
    if not current.ok:
        return current
    existing = next((a for a in current.value if a.id == args.id), None)
    if existing is None:
        return CommandResult(error=f"Agent '{args.id}' not found")
    return commands.update_agent(_agent_from_args(args, existing))


def _config(commands: Commands, args: argparse.Namespace) -> CommandResult:
    if args.config_command == "check":
        return commands.check_config()
    if args.config_command == "validate":
        return commands.validate_config()
    if args.config_command == "set-bots":
        if args.telegram_token is None and args.discord_token is None:
            return CommandResult(error="Nothing to change: pass --telegram-token or --discord-token")
        result = commands.save_config(
            telegram_token=args.telegram_token,
            discord_token=args.discord_token,
        )
        if not result.ok:
            return result
    result = commands.read_config()
    if result.ok and isinstance(result.value, ConfigResponse):
        # Never echo full tokens to the terminal
        shown = result.value.to_wire()
        for bots in shown.values():
            for bot in bots:
                bot["token"] = bot["token"][:4] + "..." if bot["token"] else ""
        return CommandResult(value=shown)
    return result


async def _run_headless(commands: Commands) -> int:
    """Start the bridge and block until Ctrl+C, then stop it."""
    result = await commands.start_service()
    if not result.ok:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    print("\n  CCB bridge running.")
    print("  Press Ctrl+C to stop.\n")

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def on_signal(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    while not stop_event.is_set():
        if not commands.supervisor.is_running():
            logger.warning("Bridge exited on its own")
            break
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            continue

    await commands.stop_service()
    await commands.supervisor.wait_for_log_readers(timeout=2.0)
    return 0


async def _dispatch(commands: Commands, args: argparse.Namespace) -> int:
    if args.command == "run":
        return await _run_headless(commands)
    if args.command == "stop":
        return _emit(await commands.stop_service())
    if args.command == "status":
        return _emit(await commands.get_status())
    if args.command == "pairings":
        return _emit(await commands.get_pairings())
    if args.command == "approve":
        return _emit(await commands.approve_pairing(args.code))
    if args.command == "deny":
        return _emit(await commands.deny_pairing(args.code))
    if args.command == "plugins":
        return _emit(commands.get_installed_plugins())
    if args.command == "config":
        return _emit(_config(commands, args))
    if args.command == "agents":
        return _emit(_agents(commands, args))
    return 2


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the desktop controller CLI."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    commands = Commands.create()
    return asyncio.run(_dispatch(commands, args))


if __name__ == "__main__":
    sys.exit(main())
