from __future__ import annotations

import asyncio
import logging
import shutil
import typing as t

import anyio

from mantra_pair.errors import ProtocolError, ResourceError, TerminalProtocolError
from mantra_pair.event.inmemory import SessionEventBus
from mantra_pair.event.types import EventName, SessionEvent
from mantra_pair.monitoring import metrics
from mantra_pair.protocol.base import Connection, ConnectionUpdate, Connector, UpdateKind, self_jid
from mantra_pair.utils.config import SessionConfig
from mantra_pair.utils.resilience import DisconnectReason, RetryPolicy

from .clock import Clock, Timer
from .exporter import CredentialExporter
from .models import PairingMethod, PairingRequest, SessionStatus, format_pairing_code
from .qr import render_qr_data_url

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"

CONFIRMATION_TEXT = (
    "╭━━━━━━━━━━━━━━━╮\n"
    "│ *MANTRA CONNECTED* ✅\n"
    "╰━━━━━━━━━━━━━━━╯\n\n"
    "✓ Session sent above\n"
    "✓ Keep it private and secure\n\n"
    "_Powered by Mantra Inc_"
)


class PairingSession:
    """One pairing attempt, from connection request to export or failure.

    All mutation happens on the event loop: connection updates are handled by
    a pump task per connection, timers fire through the injected clock, and
    every terminal path ends in `close()`, which runs once.
    """

    def __init__(
        self,
        session_id: str,
        request: PairingRequest,
        *,
        stream_key: str,
        session_dir: str,
        connector: Connector,
        exporter: CredentialExporter,
        retry_policy: RetryPolicy,
        clock: Clock,
        config: t.Optional[SessionConfig] = None,
        on_closed: t.Optional[t.Callable[["PairingSession"], None]] = None,
        log_exports: bool = False,
    ) -> None:
        self.id = session_id
        self.method = request.method
        self.phone = request.phone
        self.stream_key = stream_key
        self.session_dir = session_dir
        self.status = SessionStatus.CREATED
        self.retry_count = 0
        self.created_at = clock.now()
        self.last_event_at = self.created_at
        self.last_code: t.Optional[str] = None
        self.last_qr: t.Optional[str] = None
        self.connection: t.Optional[Connection] = None
        self.events = SessionEventBus(session_id)

        self._connector = connector
        self._exporter = exporter
        self._retry = retry_policy
        self._clock = clock
        self._config = config or SessionConfig()
        self._on_closed = on_closed
        self._log_exports = log_exports

        self._ttl_timer: t.Optional[Timer] = None
        self._idle_timer: t.Optional[Timer] = None
        # Bumped on every connection attempt; continuations compare it after each await
        self._generation = 0
        self._closing = False
        self._tasks: t.Set["asyncio.Task[t.Any]"] = set()
        # Directory prep plus socket open; shielded so close() can wait it out
        self._opening: t.Optional["asyncio.Future[t.Optional[Connection]]"] = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closing

    @property
    def timers_armed(self) -> bool:
        return bool(
            self._ttl_timer and not self._ttl_timer.cancelled and self._idle_timer and not self._idle_timer.cancelled
        )

    def start(self) -> None:
        """Arm both timers and begin connecting in the background."""
        self._ttl_timer = self._clock.call_later(self._config.ttl_seconds, self._on_ttl)
        self._arm_idle()
        self._spawn(self._connect())

    async def expire(self, message: str = "Session expired.") -> None:
        await self._fail(message)

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        outcome = "failed" if self.status is SessionStatus.FAILED else (
            "exported" if self.status is SessionStatus.EXPORTED else "terminated"
        )
        if not self.status.is_terminal:
            self.status = SessionStatus.TERMINATED

        if self._on_closed is not None:
            self._on_closed(self)
        for timer in (self._ttl_timer, self._idle_timer):
            if timer is not None:
                timer.cancel()

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        conns = [self.connection]
        self.connection = None
        if self._opening is not None:
            # The directory or socket may still be in flight; both must land before cleanup
            (opened,) = await asyncio.gather(self._opening, return_exceptions=True)
            self._opening = None
            if isinstance(opened, Connection) and opened is not conns[0]:
                conns.append(opened)
        for conn in conns:
            if conn is not None:
                await self._end_connection(conn)

        try:
            await anyio.to_thread.run_sync(shutil.rmtree, self.session_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("[%s] Failed to remove %s: %s", self.id, self.session_dir, exc)

        self.events.close()
        metrics.pairing_sessions_total.inc(outcome=outcome)
        metrics.pairing_session_duration_seconds.observe(self._clock.now() - self.created_at)
        logger.info("[%s] Session cleaned (%s)", self.id, outcome)

    def snapshot_events(self) -> t.List[SessionEvent]:
        """Current state for a late subscriber: status, then any cached code/QR."""
        replay = [SessionEvent.status(self.status.value)]
        if self.last_code:
            replay.append(SessionEvent.code(self.last_code, self._config.code_expires_in_seconds))
        if self.last_qr:
            replay.append(SessionEvent.qr(self.last_qr))
        return replay

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _spawn(self, coro: t.Coroutine[t.Any, t.Any, t.Any]) -> "asyncio.Task[t.Any]":
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: "asyncio.Task[t.Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[%s] Session task crashed", self.id, exc_info=exc)
            if not self._closing:
                self._spawn(self._fail(f"Session failed: {exc}"))

    def _emit(self, event: SessionEvent) -> None:
        self.last_event_at = self._clock.now()
        if event.name is not EventName.ERROR:
            self._arm_idle()
        self.events.publish(event)

    def _set_status(self, status: SessionStatus, **extra: t.Any) -> None:
        if self.status.is_terminal or self._closing:
            return
        self.status = status
        self._emit(SessionEvent.status(status.value, **extra))

    def _arm_idle(self) -> None:
        if self._closing:
            return
        if self._idle_timer is not None:
            self._idle_timer.cancel()
        self._idle_timer = self._clock.call_later(self._config.idle_ttl_seconds, self._on_idle)

    def _on_ttl(self) -> None:
        self._spawn(self._fail("Session expired."))

    def _on_idle(self) -> None:
        self._spawn(self._fail("Session expired due to inactivity."))

    def _is_live(self, conn: Connection) -> bool:
        return not self._closing and self.connection is conn

    def _mark_failed(self, message: str) -> bool:
        if self._closing or self.status.is_terminal:
            return False
        logger.warning("[%s] %s", self.id, message)
        self.status = SessionStatus.FAILED
        self._emit(SessionEvent.error(message))
        return True

    async def _fail(self, message: str) -> None:
        if self._mark_failed(message):
            await self.close()

    async def _end_connection(self, conn: Connection) -> None:
        try:
            await conn.end()
        except Exception as exc:  # noqa: BLE001 - a dying socket must not block cleanup
            logger.debug("[%s] Error ending connection: %s", self.id, exc)

    async def _prepare_dir(self) -> None:
        try:
            await anyio.Path(self.session_dir).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ResourceError(f"Failed to prepare session storage: {exc}") from exc

    async def _read_creds(self) -> bytes:
        try:
            return await anyio.Path(self.session_dir, CREDS_FILE).read_bytes()
        except OSError as exc:
            raise ResourceError(f"{CREDS_FILE} not found after connect") from exc

    async def _open_connection(self, generation: int) -> t.Optional[Connection]:
        await self._prepare_dir()
        if self._closing or generation != self._generation:
            return None
        self._set_status(SessionStatus.STARTING)
        return await self._connector.open(self.session_dir, use_pairing_code=self.method is PairingMethod.CODE)

    async def _connect(self) -> None:
        if self._closing:
            return
        self._generation += 1
        generation = self._generation

        opening = self._opening = asyncio.ensure_future(self._open_connection(generation))
        try:
            conn = await asyncio.shield(opening)
        except ResourceError as exc:
            self._opening = None
            await self._fail(exc.message)
            return
        except ProtocolError as exc:
            self._opening = None
            await self._fail(f"Failed to start session: {exc.message}")
            return
        self._opening = None
        if conn is None:
            return
        if self._closing or generation != self._generation:
            # Superseded while the socket was opening
            await self._end_connection(conn)
            return

        self.connection = conn
        self._spawn(self._pump(conn))

        if self.method is PairingMethod.CODE:
            self._set_status(SessionStatus.REQUESTING_CODE)
            await self._request_code(conn)
        else:
            self._set_status(SessionStatus.WAITING_QR)

    async def _request_code(self, conn: Connection) -> None:
        await self._clock.sleep(self._config.code_settle_seconds)
        if not self._is_live(conn):
            return
        assert self.phone is not None
        try:
            code = await conn.request_pairing_code(self.phone)
        except TerminalProtocolError as exc:
            if self._is_live(conn):
                await self._fail(f"Failed to generate pairing code: {exc.message}")
            return
        except ProtocolError as exc:
            if not self._is_live(conn):
                return
            await self._handle_failure(
                conn, exc.reason, terminal_message=f"Failed to generate pairing code: {exc.message}"
            )
            return
        if not self._is_live(conn):
            logger.info("[%s] Discarding pairing code from a replaced connection", self.id)
            return

        self.last_code = format_pairing_code(code)
        self._emit(SessionEvent.code(t.cast(str, self.last_code), self._config.code_expires_in_seconds))
        logger.info("[%s] Pairing code issued", self.id)

    async def _pump(self, conn: Connection) -> None:
        async for update in conn.events():
            if not self._is_live(conn):
                break
            await self._handle_update(conn, update)

    async def _handle_update(self, conn: Connection, update: ConnectionUpdate) -> None:
        if update.kind is UpdateKind.CONNECTING:
            logger.info("[%s] Connection status: connecting", self.id)
        elif update.kind is UpdateKind.QR:
            if self.method is PairingMethod.QR and update.qr:
                try:
                    image = render_qr_data_url(update.qr)
                except (ValueError, OSError) as exc:
                    await self._fail(f"Failed to generate QR: {exc}")
                    return
                self.last_qr = image
                self._emit(SessionEvent.qr(image))
        elif update.kind is UpdateKind.CREDS_UPDATED:
            logger.debug("[%s] Credentials updated", self.id)
        elif update.kind is UpdateKind.OPEN:
            await self._on_open(conn)
        elif update.kind is UpdateKind.CLOSE:
            await self._on_close(conn, update.reason, update.message or "Unknown error")

    async def _on_close(self, conn: Connection, reason: t.Optional[int], message: str) -> None:
        logger.warning(
            "[%s] Connection closed: %s%s", self.id, message, f" (code {reason})" if reason is not None else ""
        )
        if reason == DisconnectReason.LOGGED_OUT:
            await self._fail("Logged out by WhatsApp. Start pairing again.")
            return
        await self._handle_failure(conn, reason)

    async def _handle_failure(
        self, conn: Connection, reason: t.Optional[int], *, terminal_message: t.Optional[str] = None
    ) -> None:
        if not self._is_live(conn):
            return
        attempt = self.retry_count + 1
        if not self._retry.should_retry(attempt, reason):
            await self._fail(terminal_message or self._failure_message(reason))
            return

        self.retry_count = attempt
        metrics.pairing_retries_total.inc()
        self._set_status(SessionStatus.RETRYING, retry=self.retry_count, maxRetries=self._retry.max_retries)
        generation = self._generation
        self.connection = None
        await self._end_connection(conn)

        delay = self._retry.backoff_delay(attempt)
        logger.info("[%s] Retry %d/%d in %.1fs", self.id, attempt, self._retry.max_retries, delay)
        await self._clock.sleep(delay)
        if self._closing or generation != self._generation:
            logger.info("[%s] Retry abandoned; session no longer active", self.id)
            return
        self._spawn(self._connect())

    def _failure_message(self, reason: t.Optional[int]) -> str:
        code = f" (code {reason})" if reason is not None else ""
        if reason == DisconnectReason.UNAVAILABLE_SERVICE:
            return (
                "WhatsApp phone-number pairing is temporarily unavailable (code 503). "
                "Try QR pairing instead."
            )
        if reason is None or reason in (
            DisconnectReason.CONNECTION_CLOSED,
            DisconnectReason.CONNECTION_LOST,
            DisconnectReason.RESTART_REQUIRED,
        ):
            return f"Connection failed after {self.retry_count} retries{code}"
        return f"Connection failed{code}"

    async def _on_open(self, conn: Connection) -> None:
        self.retry_count = 0
        logger.info("[%s] Successfully connected", self.id)
        self._set_status(SessionStatus.CONNECTED)
        self._emit(SessionEvent(EventName.CONNECTED, {"ok": True}))

        await self._clock.sleep(self._config.connect_settle_seconds)
        if not self._is_live(conn):
            return

        try:
            creds = await self._read_creds()
        except ResourceError as exc:
            await self._fail(exc.message)
            return

        try:
            await self._deliver(conn, creds)
        except Exception as exc:  # noqa: BLE001 - protocol layer errors are opaque
            self._mark_failed(f"Failed to export session: {exc}")
        finally:
            if not self._closing:
                await self._clock.sleep(self._config.cleanup_grace_seconds)
            await self.close()

    async def _deliver(self, conn: Connection, creds: bytes) -> None:
        tokens = self._exporter.export(creds)
        jid = self_jid(conn.user_id)
        if not jid:
            raise TerminalProtocolError("Could not resolve self JID")

        for token in tokens:
            await conn.send_text(jid, token)
            await self._clock.sleep(self._config.message_gap_seconds)
        await conn.send_text(jid, CONFIRMATION_TEXT)

        self._set_status(SessionStatus.EXPORTED)
        self._emit(SessionEvent(EventName.EXPORTED, {"encrypted": self._exporter.encrypted}))
        if self._log_exports:
            logger.warning("[%s] Exported session tokens: %s...", self.id, ", ".join(tok[:18] for tok in tokens))
