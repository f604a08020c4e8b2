"""Shared fixtures and fakes for unit and integration tests."""

from __future__ import annotations

import asyncio
import os
import typing as t

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mantra_pair.core.clock import ManualClock
from mantra_pair.core.exporter import (
    ENCRYPTED_PREFIX,
    NONCE_SIZE,
    TAG_SIZE,
    CredentialExporter,
    _b64url_encode,
    derive_key,
)
from mantra_pair.core.registry import SessionRegistry
from mantra_pair.errors import ProtocolError
from mantra_pair.event.inmemory import Subscription
from mantra_pair.event.types import EventName, SessionEvent
from mantra_pair.protocol.base import Connection, ConnectionUpdate, Connector, UpdateKind
from mantra_pair.utils.config import ExportConfig, RetryConfig, SessionConfig

SAMPLE_CREDS = b'{"noiseKey":{"private":"abc","public":"def"},"me":{"id":"15551234567:12@s.whatsapp.net"}}'


class FakeConnection(Connection):
    """In-memory stand-in for a protocol socket; tests push updates into it."""

    def __init__(self, session_dir: str, use_pairing_code: bool) -> None:
        self.session_dir = session_dir
        self.use_pairing_code = use_pairing_code
        self.code: str = "ABCD1234"
        self.code_error: t.Optional[ProtocolError] = None
        self.code_gate: t.Optional[asyncio.Event] = None
        self.code_requests: t.List[str] = []
        self.send_error: t.Optional[Exception] = None
        self.sent: t.List[t.Tuple[str, str]] = []
        self.ended = False
        self.end_calls = 0
        self._user_id: t.Optional[str] = "15551234567:12@s.whatsapp.net"
        self._updates: "asyncio.Queue[t.Optional[ConnectionUpdate]]" = asyncio.Queue()

    @property
    def user_id(self) -> t.Optional[str]:
        return self._user_id

    @user_id.setter
    def user_id(self, value: t.Optional[str]) -> None:
        self._user_id = value

    def push(self, kind: UpdateKind, **kwargs: t.Any) -> None:
        self._updates.put_nowait(ConnectionUpdate(kind, **kwargs))

    def write_creds(self, content: bytes = SAMPLE_CREDS) -> None:
        os.makedirs(self.session_dir, exist_ok=True)
        with open(os.path.join(self.session_dir, "creds.json"), "wb") as fh:
            fh.write(content)

    async def events(self) -> t.AsyncIterator[ConnectionUpdate]:
        while True:
            update = await self._updates.get()
            if update is None:
                return
            yield update

    async def request_pairing_code(self, phone: str) -> str:
        self.code_requests.append(phone)
        if self.code_gate is not None:
            await self.code_gate.wait()
        if self.code_error is not None:
            raise self.code_error
        return self.code

    async def send_text(self, jid: str, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, text))

    async def end(self) -> None:
        self.end_calls += 1
        if not self.ended:
            self.ended = True
            self._updates.put_nowait(None)


class FakeConnector(Connector):
    def __init__(self) -> None:
        self.connections: t.List[FakeConnection] = []
        self.open_error: t.Optional[ProtocolError] = None
        self.prepare: t.Optional[t.Callable[[FakeConnection], None]] = None

    async def open(self, session_dir: str, *, use_pairing_code: bool) -> Connection:
        if self.open_error is not None:
            raise self.open_error
        conn = FakeConnection(session_dir, use_pairing_code)
        if self.prepare is not None:
            self.prepare(conn)
        self.connections.append(conn)
        return conn

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]

    @property
    def live(self) -> t.List[FakeConnection]:
        return [c for c in self.connections if not c.ended]


def _drain(sub: Subscription) -> t.List[SessionEvent]:
    """Every event queued on a subscription so far (end-of-stream excluded)."""
    events: t.List[SessionEvent] = []
    while True:
        try:
            event = sub.get_nowait()
        except asyncio.QueueEmpty:
            return events
        if event is not None:
            events.append(event)


def statuses(events: t.Iterable[SessionEvent]) -> t.List[str]:
    return [e.data["status"] for e in events if e.name is EventName.STATUS]


@pytest.fixture
def drain() -> t.Callable[[Subscription], t.List[SessionEvent]]:
    return _drain


@pytest.fixture
def status_names() -> t.Callable[[t.Iterable[SessionEvent]], t.List[str]]:
    return statuses


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def session_config(tmp_path) -> SessionConfig:
    return SessionConfig(
        ttl_seconds=300.0,
        idle_ttl_seconds=120.0,
        cleanup_interval_seconds=30.0,
        temp_dir=str(tmp_path / "temp"),
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_retries=3, base_delay_seconds=5.0, max_delay_seconds=30.0)


@pytest.fixture
def registry(connector, session_config, retry_config, clock) -> SessionRegistry:
    return SessionRegistry(
        connector,
        session_config=session_config,
        retry_config=retry_config,
        export_config=ExportConfig(),
        clock=clock,
    )


@pytest.fixture
def encrypted_exporter() -> CredentialExporter:
    return CredentialExporter(encrypted=True, secret="correct horse battery staple")


async def _eventually(predicate: t.Callable[[], bool], timeout: float = 2.0) -> None:
    """Wait in real time until `predicate()` holds; covers worker-thread file I/O."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually() -> t.Callable[..., t.Awaitable[None]]:
    return _eventually


def _seal(plaintext: bytes, secret: str = "correct horse battery staple") -> str:
    """Encrypt arbitrary bytes in the export token layout, bypassing envelope construction."""
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(derive_key(secret)).encrypt(nonce, plaintext, None)
    return ENCRYPTED_PREFIX + _b64url_encode(nonce + sealed[-TAG_SIZE:] + sealed[:-TAG_SIZE])


@pytest.fixture
def seal() -> t.Callable[..., str]:
    return _seal
