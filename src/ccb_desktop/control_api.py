# CCB Desktop: Control API Client
# Thin HTTP client for the bridge's local control API (127.0.0.1:38792).
# Reads are best-effort: an unreachable or failing bridge reads as
# "no information" (None / [] / False). Approve and deny raise
# ControlApiError when the request can't be sent, so an operator action
# never fails silently.
# Created: 2026-03-02

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ccb_desktop.common import CONTROL_API_URL
from ccb_desktop.models import BridgeStatus, PairingRequest, SessionInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class ControlApiError(Exception):
    """A state-changing request could not be delivered to the bridge."""


class ControlApiClient:
    """Client for the bridge control API."""

    def __init__(self, base_url: str = CONTROL_API_URL, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get_json(self, path: str) -> Any | None:
        """GET a JSON body, or None if the bridge can't answer."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(self._url(path))
        except httpx.HTTPError as exc:
            logger.debug("GET %s failed: %s", path, exc)
            return None
        if not resp.is_success:
            logger.debug("GET %s returned %s", path, resp.status_code)
            return None
        try:
            return resp.json()
        except ValueError as exc:
            logger.warning("GET %s returned invalid JSON: %s", path, exc)
            return None

    # ── Reads ──────────────────────────────────────────────────────────

    async def status(self) -> BridgeStatus | None:
        """Current bridge status, or None when it isn't reachable."""
        data = await self._get_json("/status")
        if data is None:
            return None
        try:
            return BridgeStatus.model_validate(data)
        except ValidationError as exc:
            logger.warning("Unexpected /status payload: %s", exc)
            return None

    async def pairings(self) -> list[PairingRequest]:
        """Pending pairing requests; empty when the bridge isn't reachable."""
        data = await self._get_json("/pairings")
        if not isinstance(data, dict):
            return []
        try:
            return [PairingRequest.model_validate(p) for p in data.get("pairings", [])]
        except ValidationError as exc:
            logger.warning("Unexpected /pairings payload: %s", exc)
            return []

    async def sessions(self) -> list[SessionInfo]:
        """Chat sessions known to the bridge; empty when unreachable."""
        data = await self._get_json("/sessions")
        if not isinstance(data, dict):
            return []
        try:
            return [SessionInfo.model_validate(s) for s in data.get("sessions", [])]
        except ValidationError as exc:
            logger.warning("Unexpected /sessions payload: %s", exc)
            return []

    async def health(self) -> bool:
        """True if ``/health`` answers ``{"ok": true}``."""
        data = await self._get_json("/health")
        return isinstance(data, dict) and data.get("ok") is True

    async def is_reachable(self, timeout: float | None = None) -> bool:
        """True if anything answers on ``/status``, whatever the status code."""
        try:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                await client.get(self._url("/status"))
            return True
        except httpx.HTTPError:
            return False

    # ── Actions ────────────────────────────────────────────────────────

    async def _post_action(self, path: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self._url(path))
        except httpx.HTTPError as exc:
            raise ControlApiError(str(exc) or exc.__class__.__name__) from exc
        if not resp.is_success:
            logger.info("POST %s returned %s", path, resp.status_code)
        return resp.is_success

    async def approve_pairing(self, code: str) -> bool:
        """Approve a pairing code. False if the bridge rejected it."""
        return await self._post_action(f"/pairings/{quote(code, safe='')}/approve")

    async def deny_pairing(self, code: str) -> bool:
        """Deny a pairing code. False if the bridge rejected it."""
        return await self._post_action(f"/pairings/{quote(code, safe='')}/deny")

    async def request_stop(self) -> bool:
        """Ask the bridge to shut itself down. Never raises."""
        try:
            return await self._post_action("/stop")
        except ControlApiError as exc:
            logger.debug("Stop request not delivered: %s", exc)
            return False
