"""Shared pytest fixtures and in-memory fakes for docsync tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from dotenv import load_dotenv

from docsync.config_schema import PolicyConfig, RetryConfig, UnifiedConfig
from docsync.errors import DocumentNotFoundError
from docsync.sync.metadata import (
    FrontmatterCodec,
    content_hash,
    encode_document,
    tracked_from_metadata,
)
from docsync.sync.models import (
    LinkStatus,
    RemoteObservation,
    TrackedDocument,
    utcnow,
)

load_dotenv()

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(minutes: float) -> datetime:
    """Timestamp *minutes* after ``T0``."""
    return T0 + timedelta(minutes=minutes)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class Clock:
    """Deterministic clock; every ``tick()`` advances one minute."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def tick(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


class FakeStorage:
    """In-memory ``LocalStorage`` keyed by relative POSIX path."""

    def __init__(self, clock: Clock, hidden: tuple[str, ...] = (".trash",)):
        self.clock = clock
        self.files: dict[str, str] = {}
        self.mtimes: dict[str, datetime] = {}
        self.hidden = hidden
        self.writes: list[str] = []

    def put(self, path: str, raw: str, modified_at: datetime) -> None:
        self.files[path] = raw
        self.mtimes[path] = modified_at

    def read_document(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    def write_document(self, path: str, raw: str) -> None:
        self.files[path] = raw
        self.mtimes[path] = self.clock.tick()
        self.writes.append(path)

    def list_documents(self) -> list[str]:
        return sorted(
            p for p in self.files if p.split("/", 1)[0] not in self.hidden
        )

    def move_document(self, source: str, target: str) -> None:
        if target in self.files:
            raise FileExistsError(target)
        self.files[target] = self.files.pop(source)
        self.mtimes[target] = self.mtimes.pop(source)

    def delete_document(self, path: str) -> None:
        del self.files[path]
        del self.mtimes[path]

    def exists(self, path: str) -> bool:
        return path in self.files

    def modified_at(self, path: str) -> datetime:
        return self.mtimes[path]


class FakeRemoteClient:
    """In-memory ``RemoteClient``.

    ``list_documents`` returns metadata only (empty bodies), like most
    document APIs, so the engine has to fetch bodies it needs.
    """

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self.docs: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}
        self._next_id = 1

    def add(
        self,
        identifier: str,
        derived_path: str,
        content: str,
        modified_at: datetime,
        trashed: bool = False,
    ) -> None:
        self.docs[identifier] = {
            "derived_path": derived_path,
            "content": content,
            "modified_at": modified_at,
            "trashed": trashed,
        }

    def edit(self, identifier: str, content: str) -> None:
        """Simulate an edit made by someone else, after any sync so far."""
        self.docs[identifier]["content"] = content
        self.docs[identifier]["modified_at"] = utcnow() + timedelta(seconds=1)

    def _observation(self, identifier: str, body: bool) -> RemoteObservation:
        doc = self.docs[identifier]
        return RemoteObservation(
            identifier=identifier,
            content=doc["content"] if body else "",
            modified_at=doc["modified_at"],
            derived_path=doc["derived_path"],
            trashed=doc["trashed"],
        )

    def _check(self, operation: str, identifier: str | None = None) -> None:
        self.calls.append((operation, identifier))
        exc = self.fail_on.get(operation)
        if exc is not None:
            raise exc

    async def get_document(self, identifier: str) -> RemoteObservation:
        self._check("get", identifier)
        if identifier not in self.docs:
            raise DocumentNotFoundError(identifier)
        return self._observation(identifier, body=True)

    async def list_documents(self, folder_scope=None) -> list[RemoteObservation]:
        self._check("list")
        return [self._observation(i, body=False) for i in sorted(self.docs)]

    async def create_document(
        self, name: str, content: str, folder_scope: str
    ) -> str:
        self._check("create")
        identifier = f"new-{self._next_id}"
        self._next_id += 1
        path = f"{folder_scope}/{name}" if folder_scope else name
        self.add(identifier, path, content, self.clock.tick())
        return identifier

    async def update_document(self, identifier: str, content: str) -> None:
        self._check("update", identifier)
        if identifier not in self.docs:
            raise DocumentNotFoundError(identifier)
        self.docs[identifier]["content"] = content
        self.docs[identifier]["modified_at"] = self.clock.tick()

    async def move_document(
        self, identifier: str, folder_scope: str, name: str | None = None
    ) -> None:
        self._check("move", identifier)
        doc = self.docs[identifier]
        name = name or doc["derived_path"].rsplit("/", 1)[-1]
        doc["derived_path"] = f"{folder_scope}/{name}" if folder_scope else name
        doc["modified_at"] = self.clock.tick()

    async def delete_document(self, identifier: str) -> None:
        self._check("delete", identifier)
        self.docs.pop(identifier, None)


class FakeLinkChecker:
    """``LinkChecker`` answering from a fixed table (default: foreign)."""

    def __init__(self, statuses: dict[str, LinkStatus] | None = None):
        self.statuses = statuses or {}
        self.checked: list[str] = []

    async def check(self, identifier: str) -> LinkStatus:
        self.checked.append(identifier)
        return self.statuses.get(identifier, LinkStatus.FOREIGN)


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------

_codec = FrontmatterCodec()


def linked_doc(
    body: str,
    identifier: str,
    path: str,
    synced_at: datetime = T0,
    synced_body: str | None = None,
    revision: int = 1,
    **extra_fields,
) -> TrackedDocument:
    """Metadata of a document last synced with *synced_body* at *synced_at*."""
    return TrackedDocument(
        identifier=identifier,
        last_synced_content_hash=content_hash(
            body if synced_body is None else synced_body
        ),
        last_synced_revision=revision,
        last_synced_path=path,
        last_synced_at=synced_at,
        **extra_fields,
    )


def raw_document(meta: TrackedDocument | None, body: str) -> str:
    return encode_document(_codec, meta, body)


def read_meta(storage: FakeStorage, path: str):
    """Decode ``(TrackedDocument | None, body)`` for a stored document."""
    metadata, body = _codec.decode(storage.files[path])
    return tracked_from_metadata(metadata), body


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return Clock(start=at(10))


@pytest.fixture
def storage(clock):
    return FakeStorage(clock)


@pytest.fixture
def remote(clock):
    return FakeRemoteClient(clock)


@pytest.fixture
def codec():
    return FrontmatterCodec()


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=3, initial_delay=0, max_delay=0, jitter=0)


@pytest.fixture
def make_config(fast_retry):
    """Factory for a ``UnifiedConfig`` with instant retries."""

    def _make(**policy) -> UnifiedConfig:
        return UnifiedConfig(policy=PolicyConfig(**policy), retry=fast_retry)

    return _make
