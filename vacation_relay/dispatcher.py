"""
Relay dispatcher: persist one private message, then push it to whoever of the
other participants is online right now.

Delivery is at-most-once and best effort. Nothing is queued for offline
users, nothing is retried, and the sender never hears back. Every failure
ends up in the injected logger and in the returned DispatchResult.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from websockets.exceptions import ConnectionClosed

from .errors import PersistenceError, PersistenceTimeout, RelayError
from .events import PrivateMessageEvent, new_message_frame
from .registry import ConnectionRegistry
from .store import MessageStore, utc_now_iso


@dataclass
class DispatchResult:
    # the persisted record, None when the insert failed
    message: Optional[Dict[str, Any]] = None
    delivered_to: List[str] = field(default_factory=list)
    error: Optional[RelayError] = None

    @property
    def persisted(self) -> bool:
        return self.message is not None

    @property
    def outcome_unknown(self) -> bool:
        """True when the insert timed out, so the message may be stored even though persisted is False."""
        return self.message is None and isinstance(self.error, PersistenceTimeout)


class RelayDispatcher:
    def __init__(self, store: MessageStore, registry: ConnectionRegistry,
                 logger: Optional[logging.Logger] = None):
        self.store = store
        self.registry = registry
        self.log = logger or logging.getLogger(__name__)

    async def dispatch(self, event: PrivateMessageEvent) -> DispatchResult:
        now = utc_now_iso()
        message = {
            "id": str(uuid.uuid4()),
            "conversationId": event.conversation_id,
            "senderId": event.sender_id,
            "content": event.content,
            "createdAt": now,
        }

        # 1) persist; nothing else happens without it
        try:
            await self.store.insert_message(message)
        except PersistenceTimeout as e:
            # the row may or may not exist; nothing is forwarded
            self.log.error("Message %s in conversation %s not forwarded, insert outcome unknown: %s",
                           message["id"], event.conversation_id, e)
            return DispatchResult(error=e)
        except PersistenceError as e:
            self.log.error("Failed to persist message in conversation %s: %s", event.conversation_id, e)
            return DispatchResult(error=e)

        result = DispatchResult(message=message)

        # 2) last-activity marker, best effort
        try:
            await self.store.touch_conversation(event.conversation_id, now)
        except PersistenceError as e:
            self.log.warning("Could not update conversation %s activity: %s", event.conversation_id, e)
            result.error = e

        # 3) enrichment + participants; no partial forwarding if either fails
        try:
            sender_name = await self.store.get_sender_name(event.sender_id)
            participants = await self.store.get_participants(event.conversation_id)
        except PersistenceError as e:
            self.log.error("Message %s stored but not forwarded: %s", message["id"], e)
            result.error = e
            return result

        frame = new_message_frame(dict(message, senderName=sender_name))

        # 4) fan-out to everyone online except the sender
        for user_id in participants:
            if user_id == event.sender_id:
                continue
            conn = self.registry.lookup(user_id)
            if conn is None or not conn.is_open:
                continue
            try:
                await conn.send(frame)
            except ConnectionClosed:
                self.log.debug("Recipient %s went away before message %s was sent", user_id, message["id"])
                continue
            result.delivered_to.append(user_id)
            self.log.info("Forwarded message %s to %s", message["id"], user_id)

        return result
