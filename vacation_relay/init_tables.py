# Run with --force to reset the relay tables, or without it for a dry-run.
"""
Reset and recreate the chat tables used by the relay.

Usage:
  vacation-relay-init-tables                 # dry-run (shows what *would* happen)
  vacation-relay-init-tables --force         # actually drop & recreate the tables
  vacation-relay-init-tables --force --seed  # reset, then add two users and their conversation
"""

import argparse
import asyncio
import logging

from .config import load_settings
from .datastore import CREATE_STMTS, INDEXES, TABLES_IN_ORDER, Datastore, create_datastore
from .store import MessageStore

log = logging.getLogger(__name__)

SAMPLE_USERS = [("alice", "Alice"), ("bob", "Bob")]


def describe_reset() -> list:
    """The statements a --force run would execute, in order."""
    stmts = [f"DROP TABLE IF EXISTS {t}" for t in TABLES_IN_ORDER]
    stmts += [" ".join(sql.split()) for sql in CREATE_STMTS]
    stmts += [sql for _, _, sql in INDEXES]
    return stmts


async def seed_sample_data(store: MessageStore) -> dict:
    for uid, username in SAMPLE_USERS:
        await store.create_user(uid, username)
        log.info("seeded user: %s", uid)
    conversation = await store.get_or_create_conversation(SAMPLE_USERS[0][0], SAMPLE_USERS[1][0])
    log.info("seeded conversation: %s", conversation["id"])
    return conversation


def reset(datastore: Datastore, force: bool = False, seed: bool = False):
    if not force:
        for sql in describe_reset():
            log.info("DRY-RUN: %s", sql)
        log.info("DRY-RUN: No changes made. Re-run with --force to apply.")
        return None

    datastore.drop_tables()
    datastore.ensure_tables()
    log.info("Tables dropped & recreated: %s", ", ".join(TABLES_IN_ORDER))

    if seed:
        return asyncio.run(seed_sample_data(MessageStore(datastore)))
    return None


def main(argv=None):
    parser = argparse.ArgumentParser(description="Reset and recreate the relay's chat tables.")
    parser.add_argument("--force", action="store_true", help="Actually drop & recreate tables (no --force = dry run).")
    parser.add_argument("--seed", action="store_true", help="After reset, create two test users and their conversation.")
    args = parser.parse_args(argv)

    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format='%(asctime)s %(levelname)s:%(message)s')
    reset(create_datastore(settings), force=args.force, seed=args.seed)


if __name__ == "__main__":
    main()
