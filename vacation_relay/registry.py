import itertools
import logging
import threading
from typing import Dict, Optional

from websockets.protocol import State

log = logging.getLogger(__name__)

_ids = itertools.count(1)


class Connection:
    """One client socket plus the user identity it registered as (None until then)."""

    def __init__(self, ws):
        self.ws = ws
        self.conn_id = next(_ids)
        self.user_id: Optional[str] = None
        self.closed = False

    @property
    def is_open(self) -> bool:
        return not self.closed and getattr(self.ws, "state", None) is State.OPEN

    async def send(self, frame: str) -> None:
        await self.ws.send(frame)

    def __repr__(self):
        return f"<Connection #{self.conn_id} user={self.user_id!r} open={self.is_open}>"


class ConnectionRegistry:
    """Map of user id -> the single live Connection for that user.

    Shared by the asyncio relay and the presence thread, hence the lock.
    A later register() for the same user replaces the earlier connection
    without telling it.
    """

    def __init__(self):
        self._clients: Dict[str, Connection] = {}
        self.lock = threading.Lock()

    def register(self, user_id: str, conn: Connection) -> None:
        with self.lock:
            # a socket re-registering under another identity gives up the old one
            old_id = conn.user_id
            if old_id is not None and old_id != user_id and self._clients.get(old_id) is conn:
                del self._clients[old_id]
            previous = self._clients.get(user_id)
            self._clients[user_id] = conn
            conn.user_id = user_id
        if previous is not None and previous is not conn:
            log.info("Replaced connection #%s for %s with #%s", previous.conn_id, user_id, conn.conn_id)

    def unregister(self, conn: Connection) -> bool:
        """Drop conn's entry, but only while conn is still the one mapped for its user."""
        user_id = conn.user_id
        if user_id is None:
            return False
        with self.lock:
            if self._clients.get(user_id) is conn:
                del self._clients[user_id]
                return True
        return False

    def lookup(self, user_id: str) -> Optional[Connection]:
        with self.lock:
            return self._clients.get(user_id)

    def online_users(self):
        with self.lock:
            return sorted(uid for uid, c in self._clients.items() if c.is_open)

    def __len__(self):
        with self.lock:
            return len(self._clients)
