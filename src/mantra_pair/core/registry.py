from __future__ import annotations

import asyncio
import logging
import os
import secrets
import shutil
import typing as t

import anyio

from mantra_pair.protocol.base import Connector
from mantra_pair.utils.config import ExportConfig, RetryConfig, SessionConfig
from mantra_pair.utils.resilience import RetryPolicy

from .clock import AsyncioClock, Clock
from .exporter import CredentialExporter
from .models import PairingRequest
from .session import PairingSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every live pairing session: creation, lookup, sweeping and destruction."""

    def __init__(
        self,
        connector: Connector,
        *,
        session_config: t.Optional[SessionConfig] = None,
        retry_config: t.Optional[RetryConfig] = None,
        export_config: t.Optional[ExportConfig] = None,
        exporter: t.Optional[CredentialExporter] = None,
        clock: t.Optional[Clock] = None,
    ) -> None:
        self._connector = connector
        self._config = session_config or SessionConfig()
        retry = retry_config or RetryConfig()
        self._retry_policy = RetryPolicy(retry.max_retries, retry.base_delay_seconds, retry.max_delay_seconds)
        export = export_config or ExportConfig()
        self._exporter = exporter or CredentialExporter(encrypted=export.encrypted, secret=export.secret)
        self._log_exports = export.log_exports
        self._clock = clock or AsyncioClock()
        self._sessions: t.Dict[str, PairingSession] = {}
        self._issued_ids: t.Set[str] = set()
        self._sweeper: t.Optional["asyncio.Task[None]"] = None

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def sessions(self) -> t.List[PairingSession]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> t.Optional[PairingSession]:
        return self._sessions.get(session_id)

    def _new_id(self) -> str:
        while True:
            session_id = f"session_{int(self._clock.now() * 1000)}_{secrets.token_hex(6)}"
            if session_id not in self._issued_ids:
                self._issued_ids.add(session_id)
                return session_id

    async def create(self, method: t.Any, phone: t.Any = None) -> PairingSession:
        """Validate, register and start a session; returns before any protocol milestone."""
        request = PairingRequest.parse(method, phone)
        session_id = self._new_id()
        session = PairingSession(
            session_id,
            request,
            stream_key=secrets.token_urlsafe(24),
            session_dir=os.path.join(self._config.temp_dir, session_id),
            connector=self._connector,
            exporter=self._exporter,
            retry_policy=self._retry_policy,
            clock=self._clock,
            config=self._config,
            on_closed=self._forget,
            log_exports=self._log_exports,
        )
        self._sessions[session_id] = session
        session.start()
        logger.info(
            "[%s] New %s pairing request%s",
            session_id,
            request.method.value.upper(),
            f" for {request.phone}" if request.phone else "",
        )
        return session

    def _forget(self, session: PairingSession) -> None:
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]

    async def destroy(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        await session.close()
        return True

    async def sweep(self) -> int:
        """Expire sessions older than the TTL. Backstop for per-session timers."""
        now = self._clock.now()
        expired = 0
        for session in self.sessions():
            if now - session.created_at > self._config.ttl_seconds:
                await session.expire("Session expired.")
                expired += 1
        return expired

    async def _sweep_forever(self) -> None:
        while True:
            await self._clock.sleep(self._config.cleanup_interval_seconds)
            try:
                count = await self.sweep()
            except Exception:  # noqa: BLE001 - keep the sweeper alive
                logger.exception("Session sweep failed")
                continue
            if count:
                logger.info("Swept %d expired session(s)", count)

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.ensure_future(self._sweep_forever())

    async def close(self) -> None:
        """Stop sweeping and destroy every remaining session."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        for session in self.sessions():
            await session.close()

    async def purge_stale_dirs(self, max_age_seconds: t.Optional[float] = None) -> int:
        """Remove working directories a previous process left behind."""
        max_age = self._config.stale_dir_max_age_seconds if max_age_seconds is None else max_age_seconds
        root = anyio.Path(self._config.temp_dir)
        await root.mkdir(parents=True, exist_ok=True)
        now = self._clock.now()
        removed = 0
        async for entry in root.iterdir():
            if entry.name in self._sessions:
                continue
            try:
                stat = await entry.stat()
                if now - stat.st_mtime <= max_age:
                    continue
                if await entry.is_dir():
                    await anyio.to_thread.run_sync(shutil.rmtree, str(entry))
                else:
                    await entry.unlink()
                removed += 1
            except OSError as exc:
                logger.warning("Could not remove stale session dir %s: %s", entry, exc)
        return removed
