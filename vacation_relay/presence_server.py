import asyncio
import logging
import threading
from typing import Optional

from flask import Flask, jsonify

from .errors import PersistenceError
from .registry import ConnectionRegistry
from .store import MessageStore

log = logging.getLogger(__name__)


def create_presence_app(registry: ConnectionRegistry, store: Optional[MessageStore] = None) -> Flask:
    """Read-only HTTP view on the relay: who is online, and conversation history."""
    app = Flask(__name__)

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(e):
        log.error("Datastore error in %s: %s", app.name, e, exc_info=True)
        return jsonify({"error": "Datastore unavailable."}), 503

    @app.get("/health")
    def health():
        # registered users whose connection is still open
        return {"ok": True, "online": len(registry.online_users())}

    @app.get("/lookup/<user_id>")
    def lookup(user_id):
        conn = registry.lookup(user_id)
        if conn is None or not conn.is_open:
            return jsonify({"error": "not found"}), 404
        return {"userId": user_id, "online": True}

    @app.get("/conversations/<conversation_id>/messages")
    def conversation_messages(conversation_id):
        if store is None:
            return jsonify({"error": "history not available"}), 404
        # Flask runs views on its own thread, so each call gets a private loop
        messages = asyncio.run(store.list_messages(conversation_id))
        return jsonify(messages)

    @app.get("/users/<user_id>/conversations")
    def user_conversations(user_id):
        if store is None:
            return jsonify({"error": "history not available"}), 404
        return jsonify(asyncio.run(store.list_conversations(user_id)))

    return app


def serve_presence(app: Flask, host: str, port: int) -> threading.Thread:
    t = threading.Thread(
        target=app.run,
        kwargs={"host": host, "port": port, "use_reloader": False, "threaded": True},
        name="presence-http",
        daemon=True,
    )
    t.start()
    log.info("Presence HTTP listening on http://%s:%s", host, port)
    return t
