"""Connector for a WhatsApp protocol sidecar.

The socket itself runs in a sidecar process that owns the protocol library
(handshake, Signal keys, wire codec) and writes its multi-file auth state into
the directory it is given. This module only speaks the sidecar's small HTTP
API:

    POST   /sockets                     {"authDir", "usePairingCode"} -> {"id"}
    GET    /sockets/{id}/events         text/event-stream of connection updates
    POST   /sockets/{id}/pairing-code   {"phone"} -> {"code"}
    POST   /sockets/{id}/messages       {"jid", "text"}
    DELETE /sockets/{id}
"""

from __future__ import annotations

import json
import logging
import typing as t

import httpx

from mantra_pair.errors import ProtocolError, TerminalProtocolError, TransientProtocolError

from .base import Connection, ConnectionUpdate, Connector, UpdateKind

logger = logging.getLogger(__name__)


def parse_update(payload: t.Dict[str, t.Any]) -> t.List[ConnectionUpdate]:
    """Translate one sidecar event into zero or more connection updates."""
    if payload.get("type") == "creds.update":
        return [ConnectionUpdate(UpdateKind.CREDS_UPDATED)]

    updates: t.List[ConnectionUpdate] = []
    connection = payload.get("connection")
    if connection == "connecting":
        updates.append(ConnectionUpdate(UpdateKind.CONNECTING))
    if payload.get("qr"):
        updates.append(ConnectionUpdate(UpdateKind.QR, qr=str(payload["qr"])))
    if connection == "open":
        updates.append(ConnectionUpdate(UpdateKind.OPEN))
    elif connection == "close":
        status = payload.get("statusCode")
        updates.append(
            ConnectionUpdate(
                UpdateKind.CLOSE,
                reason=int(status) if status is not None else None,
                message=payload.get("message") or "Unknown error",
            )
        )
    return updates


class BridgeConnection(Connection):
    def __init__(self, client: httpx.AsyncClient, socket_id: str) -> None:
        self._client = client
        self._socket_id = socket_id
        self._user_id: t.Optional[str] = None
        self._ended = False

    @property
    def user_id(self) -> t.Optional[str]:
        return self._user_id

    def _url(self, suffix: str = "") -> str:
        return f"/sockets/{self._socket_id}{suffix}"

    async def events(self) -> t.AsyncIterator[ConnectionUpdate]:
        try:
            async with self._client.stream("GET", self._url("/events"), timeout=None) as r:
                r.raise_for_status()
                async for line in r.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if not data:
                        continue
                    try:
                        payload = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("Ignoring malformed bridge event on %s: %r", self._socket_id, data[:80])
                        continue
                    user = payload.get("user") or {}
                    if user.get("id"):
                        self._user_id = str(user["id"])
                    for update in parse_update(payload):
                        yield update
        except httpx.HTTPError as exc:
            if self._ended:
                return
            # A broken event stream looks like a lost connection to the session
            yield ConnectionUpdate(UpdateKind.CLOSE, reason=None, message=f"Bridge stream failed: {exc}")

    async def _post(self, suffix: str, payload: t.Dict[str, t.Any]) -> t.Dict[str, t.Any]:
        try:
            r = await self._client.post(self._url(suffix), json=payload)
        except httpx.HTTPError as exc:
            raise TransientProtocolError(f"bridge unreachable: {exc}") from exc
        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if r.is_error:
            reason = body.get("statusCode")
            # A 4xx without a disconnect code is the sidecar refusing the request itself
            error_cls = TerminalProtocolError if reason is None and r.is_client_error else ProtocolError
            raise error_cls(
                str(body.get("error") or f"bridge returned HTTP {r.status_code}"),
                reason=int(reason) if reason is not None else None,
            )
        return body

    async def request_pairing_code(self, phone: str) -> str:
        body = await self._post("/pairing-code", {"phone": phone})
        code = body.get("code")
        if not code:
            raise ProtocolError("bridge returned no pairing code")
        return str(code)

    async def send_text(self, jid: str, text: str) -> None:
        await self._post("/messages", {"jid": jid, "text": text})

    async def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        try:
            await self._client.delete(self._url())
        except httpx.HTTPError as exc:
            logger.warning("Failed to end bridge socket %s: %s", self._socket_id, exc)


class BridgeConnector(Connector):
    def __init__(self, base_url: str, *, timeout_seconds: float = 90.0, client: t.Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def open(self, session_dir: str, *, use_pairing_code: bool) -> Connection:
        try:
            r = await self._client.post("/sockets", json={"authDir": session_dir, "usePairingCode": use_pairing_code})
            r.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProtocolError(f"Could not open bridge socket: {exc}") from exc
        socket_id = str(r.json()["id"])
        logger.debug("Opened bridge socket %s for %s", socket_id, session_dir)
        return BridgeConnection(self._client, socket_id)

    async def aclose(self) -> None:
        await self._client.aclose()
