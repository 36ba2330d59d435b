import asyncio

from vacation_relay.dispatcher import RelayDispatcher
from vacation_relay.events import PrivateMessageEvent
from vacation_relay.store import utc_now_iso


def test_utc_now_iso_is_sortable():
    a = utc_now_iso()
    b = utc_now_iso()
    assert a.endswith("Z")
    assert len(a) == len(b)
    assert a <= b


def test_participants_and_sender_name(store):
    async def run():
        return (
            await store.get_participants("c1"),
            await store.get_sender_name("alice"),
            await store.get_sender_name("ghost"),
        )

    participants, name, missing = asyncio.run(run())
    assert sorted(participants) == ["alice", "bob"]
    assert name == "Alice"
    assert missing is None


def test_touch_conversation(store, datastore):
    async def run():
        touched = await store.touch_conversation("c1", "2025-01-01T00:00:00.000000Z")
        rows = await datastore.select("conversations", {"id": "c1"})
        return touched, rows

    touched, rows = asyncio.run(run())
    assert touched == 1
    assert rows[0]["updatedAt"] == "2025-01-01T00:00:00.000000Z"


def test_list_messages_enriched_and_ordered(store):
    async def run():
        await store.insert_message({"id": "m2", "conversationId": "c1", "senderId": "bob",
                                    "content": "second", "createdAt": "2024-07-20T10:00:02.000000Z"})
        await store.insert_message({"id": "m1", "conversationId": "c1", "senderId": "alice",
                                    "content": "first", "createdAt": "2024-07-20T10:00:01.000000Z"})
        await store.insert_message({"id": "m3", "conversationId": "c2", "senderId": "carol",
                                    "content": "elsewhere", "createdAt": "2024-07-20T10:00:00.000000Z"})
        return await store.list_messages("c1")

    messages = asyncio.run(run())
    assert [m["id"] for m in messages] == ["m1", "m2"]
    assert [m["senderName"] for m in messages] == ["Alice", "Bob"]


def test_get_or_create_conversation_reuses_pair(store):
    async def run():
        existing = await store.get_or_create_conversation("bob", "alice")
        created = await store.get_or_create_conversation("bob", "carol")
        again = await store.get_or_create_conversation("carol", "bob")
        return existing, created, again, await store.get_participants(created["id"])

    existing, created, again, participants = asyncio.run(run())
    assert existing["id"] == "c1"
    assert created["id"] not in ("c1", "c2")
    assert again["id"] == created["id"]
    assert sorted(participants) == ["bob", "carol"]


def test_list_conversations_follows_latest_activity(store, registry):
    dispatcher = RelayDispatcher(store, registry)

    async def run():
        await dispatcher.dispatch(PrivateMessageEvent("c2", "carol", "shift swap?"))
        after_c2 = await store.list_conversations("alice")
        await dispatcher.dispatch(PrivateMessageEvent("c1", "bob", "approved"))
        after_c1 = await store.list_conversations("alice")
        return after_c2, after_c1

    after_c2, after_c1 = asyncio.run(run())
    assert [c["id"] for c in after_c2] == ["c2", "c1"]
    assert after_c2[0]["otherParticipantName"] == "Carol"
    assert after_c2[0]["lastMessage"] == "shift swap?"
    assert after_c2[1]["lastMessage"] is None
    assert after_c2[1]["lastMessageTimestamp"] is None

    assert [c["id"] for c in after_c1] == ["c1", "c2"]
    assert after_c1[0]["otherParticipantName"] == "Bob"
    assert after_c1[0]["lastMessage"] == "approved"
    assert after_c1[0]["lastMessageTimestamp"] == after_c1[0]["updatedAt"]


def test_list_conversations_for_stranger_is_empty(store):
    assert asyncio.run(store.list_conversations("dave")) == []
