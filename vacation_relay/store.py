import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .datastore import Datastore


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with a fixed microsecond width, so strings sort like times."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class MessageStore:
    """Chat records on top of the datastore primitives.

    Every method is a single datastore round-trip, or a short chain of them
    with no transaction around it.
    """

    def __init__(self, datastore: Datastore):
        self.db = datastore

    # ---------------------------- RELAY PATH ----------------------------
    async def insert_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return await self.db.insert("messages", {
            "id": message["id"],
            "conversationId": message["conversationId"],
            "senderId": message["senderId"],
            "content": message["content"],
            "createdAt": message["createdAt"],
        })

    async def touch_conversation(self, conversation_id: str, updated_at: str) -> int:
        return await self.db.update("conversations", {"id": conversation_id}, {"updatedAt": updated_at})

    async def get_sender_name(self, user_id: str) -> Optional[str]:
        rows = await self.db.select("users", {"uid": user_id}, columns=["username"])
        return rows[0]["username"] if rows else None

    async def get_participants(self, conversation_id: str) -> List[str]:
        rows = await self.db.select(
            "conversation_participants", {"conversationId": conversation_id}, columns=["userId"]
        )
        return [r["userId"] for r in rows]

    # ---------------------------- HISTORY / SETUP ----------------------------
    async def list_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        """All messages of a conversation, oldest first, each with its senderName."""
        rows = await self.db.select("messages", {"conversationId": conversation_id}, order_by="createdAt")
        names: Dict[str, Optional[str]] = {}
        for sender_id in {r["senderId"] for r in rows}:
            names[sender_id] = await self.get_sender_name(sender_id)
        return [dict(r, senderName=names.get(r["senderId"])) for r in rows]

    async def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """Conversations user_id takes part in, most recently active first.

        Each entry carries the other participant's name and the latest
        message (None for both when the conversation is still empty).
        """
        mine = await self.db.select("conversation_participants", {"userId": user_id}, columns=["conversationId"])
        conversations = []
        for row in mine:
            conversation_id = row["conversationId"]
            found = await self.db.select("conversations", {"id": conversation_id})
            if not found:
                continue
            others = [uid for uid in await self.get_participants(conversation_id) if uid != user_id]
            other_name = await self.get_sender_name(others[0]) if others else None
            messages = await self.db.select(
                "messages", {"conversationId": conversation_id},
                columns=["content", "createdAt"], order_by="createdAt",
            )
            last = messages[-1] if messages else None
            conversations.append({
                "id": conversation_id,
                "updatedAt": found[0]["updatedAt"],
                "otherParticipantName": other_name,
                "lastMessage": last["content"] if last else None,
                "lastMessageTimestamp": last["createdAt"] if last else None,
            })
        conversations.sort(key=lambda c: c["updatedAt"], reverse=True)
        return conversations

    async def create_user(self, uid: str, username: str) -> Dict[str, Any]:
        return await self.db.insert("users", {"uid": uid, "username": username})

    async def get_or_create_conversation(self, user_a: str, user_b: str) -> Dict[str, Any]:
        """Return the two-party conversation between user_a and user_b, creating it if needed."""
        wanted = {user_a, user_b}
        mine = await self.db.select("conversation_participants", {"userId": user_a}, columns=["conversationId"])
        for row in mine:
            conversation_id = row["conversationId"]
            if set(await self.get_participants(conversation_id)) == wanted:
                found = await self.db.select("conversations", {"id": conversation_id})
                if found:
                    return found[0]

        conversation = {"id": str(uuid.uuid4()), "updatedAt": utc_now_iso()}
        await self.db.insert("conversations", conversation)
        for user_id in sorted(wanted):
            await self.db.insert("conversation_participants", {
                "conversationId": conversation["id"],
                "userId": user_id,
            })
        return conversation
