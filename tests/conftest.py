import asyncio

import pytest
from websockets.exceptions import ConnectionClosedOK
from websockets.protocol import State

from vacation_relay.datastore import SqliteDatastore
from vacation_relay.errors import PersistenceError
from vacation_relay.registry import ConnectionRegistry
from vacation_relay.store import MessageStore

USERS = [("alice", "Alice"), ("bob", "Bob"), ("carol", "Carol")]
CONVERSATIONS = {
    "c1": ["alice", "bob"],
    "c2": ["alice", "carol"],
}
OLD_TS = "2024-07-20T10:00:00.000000Z"


class FakeSocket:
    """Stands in for a websockets ServerConnection: yields frames, records sends."""

    def __init__(self, frames=(), remote_address=("127.0.0.1", 5555), error=None):
        self.frames = list(frames)
        self.sent = []
        self.state = State.OPEN
        self.remote_address = remote_address
        self.error = error

    async def send(self, frame):
        if self.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        self.sent.append(frame)

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for f in self.frames:
            yield f
        self.state = State.CLOSED
        if self.error is not None:
            raise self.error


class FailingDatastore(SqliteDatastore):
    """SQLite datastore whose calls on chosen (op, table) pairs fail like a broken server."""

    def __init__(self, path, fail_on=()):
        super().__init__(path)
        self.fail_on = set(fail_on)

    def _maybe_fail(self, op, table):
        if (op, table) in self.fail_on:
            raise PersistenceError(f"{op} failed: simulated outage", table=table, backend=self.name)

    async def insert(self, table, record):
        self._maybe_fail("insert", table)
        return await super().insert(table, record)

    async def update(self, table, filter, patch):
        self._maybe_fail("update", table)
        return await super().update(table, filter, patch)

    async def select(self, table, filter=None, columns=None, order_by=None):
        self._maybe_fail("select", table)
        return await super().select(table, filter, columns=columns, order_by=order_by)


async def seed(ds):
    for uid, username in USERS:
        await ds.insert("users", {"uid": uid, "username": username})
    for conversation_id, members in CONVERSATIONS.items():
        await ds.insert("conversations", {"id": conversation_id, "updatedAt": OLD_TS})
        for user_id in members:
            await ds.insert("conversation_participants", {"conversationId": conversation_id, "userId": user_id})


def make_datastore(path, cls=SqliteDatastore, **kw):
    ds = cls(str(path), **kw)
    ds.ensure_tables()
    asyncio.run(seed(ds))
    return ds


@pytest.fixture
def datastore(tmp_path):
    return make_datastore(tmp_path / "relay.sqlite")


@pytest.fixture
def store(datastore):
    return MessageStore(datastore)


@pytest.fixture
def registry():
    return ConnectionRegistry()
