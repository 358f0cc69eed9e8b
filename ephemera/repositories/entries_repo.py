from __future__ import annotations
"""
entries_repo.py — metadata store for uploaded entries ('entries' collection)

Documents are keyed by slug:
  { _id: <slug>, name, sum, size, timestamp, lifetime }
Inserts are write-once; a second insert for the same slug raises DuplicateKeyError.
"""

from ephemera.db.mongo import get_db
from ephemera.errors import EntryNotFoundError
from ephemera.models import Entry


async def create_entry(entry: Entry) -> None:
    db = get_db()
    await db.entries.insert_one(entry.to_document())


async def lookup_entry(slug: str) -> Entry:
    """Fetch an entry by slug. Raises EntryNotFoundError if there is none."""
    db = get_db()
    doc = await db.entries.find_one({"_id": slug})
    if not doc:
        raise EntryNotFoundError(slug)
    return Entry.from_document(doc)


async def ping() -> None:
    db = get_db()
    await db.command("ping")
