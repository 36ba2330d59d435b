"""
WebSocket relay server.

Each socket is handled by its own coroutine that processes frames one at a
time, to completion (datastore round-trips included), before reading the next.
Sockets are independent of each other; nothing serializes dispatches across
connections.
"""

import argparse
import asyncio
import logging
from typing import Optional

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosedError

from .config import RelaySettings, load_settings
from .datastore import Datastore, create_datastore
from .dispatcher import RelayDispatcher
from .errors import MalformedFrameError
from .events import PrivateMessageEvent, RegisterEvent, UnknownEvent, parse_frame
from .presence_server import create_presence_app, serve_presence
from .registry import Connection, ConnectionRegistry
from .store import MessageStore

LOG_FORMAT = '%(asctime)s %(levelname)s:%(name)s:%(message)s'


class RelayServer:
    def __init__(self, settings: RelaySettings, datastore: Datastore,
                 registry: Optional[ConnectionRegistry] = None,
                 logger: Optional[logging.Logger] = None):
        self.settings = settings
        self.datastore = datastore
        self.store = MessageStore(datastore)
        self.registry = registry or ConnectionRegistry()
        self.log = logger or logging.getLogger(__name__)
        self.dispatcher = RelayDispatcher(self.store, self.registry, logger=self.log)
        self.server = None

    # ---------------------------- CONNECTION LIFECYCLE ----------------------------
    async def handle_connection(self, ws) -> None:
        conn = Connection(ws)
        self.log.info("Client connected: #%s from %s", conn.conn_id, getattr(ws, "remote_address", None))
        try:
            async for raw in ws:
                await self.handle_frame(conn, raw)
        except ConnectionClosedError as e:
            self.log.warning("Transport error on #%s (%s): %s", conn.conn_id, conn.user_id, e)
        finally:
            conn.closed = True
            if conn.user_id is not None:
                self.registry.unregister(conn)
            self.log.info("Client disconnected: #%s (%s)", conn.conn_id, conn.user_id or "unregistered")

    async def handle_frame(self, conn: Connection, raw) -> None:
        try:
            event = parse_frame(raw)
        except MalformedFrameError as e:
            self.log.error("Dropped frame from #%s: %s", conn.conn_id, e)
            return

        try:
            if isinstance(event, RegisterEvent):
                self.registry.register(event.user_id, conn)
                self.log.info("Client #%s registered with userId: %s", conn.conn_id, event.user_id)
            elif isinstance(event, PrivateMessageEvent):
                await self.dispatcher.dispatch(event)
            elif isinstance(event, UnknownEvent):
                self.log.warning("Received unknown message type from #%s: %s", conn.conn_id, event.type)
        except Exception:
            # one bad frame must not take the socket down
            self.log.exception("Failed to process frame from #%s", conn.conn_id)

    # ---------------------------- SERVING ----------------------------
    async def serve(self, ready: Optional[asyncio.Event] = None) -> None:
        async with serve(self.handle_connection, self.settings.relay_host, self.settings.relay_port) as server:
            self.server = server
            self.log.info("WebSocket relay started on ws://%s:%s", self.settings.relay_host, self.settings.relay_port)
            if ready is not None:
                ready.set()
            await server.serve_forever()

    def start(self) -> None:
        self.datastore.ensure_tables()
        if self.settings.presence_port:
            app = create_presence_app(self.registry, self.store)
            serve_presence(app, self.settings.presence_host, self.settings.presence_port)
        asyncio.run(self.serve())


def parse_args(argv=None) -> argparse.Namespace:
    cfg = load_settings()
    parser = argparse.ArgumentParser(description="Chat relay for the on-call vacations dashboard.")
    parser.add_argument("--host", default=cfg.relay_host, help=f"WebSocket bind host (default: {cfg.relay_host})")
    parser.add_argument("--port", type=int, default=cfg.relay_port, help=f"WebSocket port (default: {cfg.relay_port})")
    parser.add_argument("--presence-port", type=int, default=cfg.presence_port,
                        help="Presence HTTP port, 0 to disable (default: %(default)s)")
    parser.add_argument("--db-backend", choices=["sqlite", "mysql"], default=cfg.db_backend)
    parser.add_argument("--db-path", default=cfg.db_path, help="SQLite file (default: %(default)s)")
    parser.add_argument("--db-timeout", type=float, default=cfg.db_timeout,
                        help="Per-call datastore timeout in seconds (default: none)")
    parser.add_argument("--log-level", default=cfg.log_level)
    args = parser.parse_args(argv)

    cfg.relay_host = args.host
    cfg.relay_port = args.port
    cfg.presence_port = args.presence_port
    cfg.db_backend = args.db_backend
    cfg.db_path = args.db_path
    cfg.db_timeout = args.db_timeout if args.db_timeout and args.db_timeout > 0 else None
    cfg.log_level = args.log_level.upper()
    args.settings = cfg
    return args


def main(argv=None):
    args = parse_args(argv)
    settings = args.settings
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    server = RelayServer(settings, create_datastore(settings))
    try:
        server.start()
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Relay stopped")


if __name__ == "__main__":
    main()
