import os
from datetime import datetime, timedelta, timezone
from unittest import IsolatedAsyncioTestCase, TestCase
from unittest.mock import AsyncMock, MagicMock, patch

from pymongo.errors import DuplicateKeyError

# Minimal env so pydantic Settings can load during imports
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB", "testdb")

from ephemera.db import mongo  # noqa: E402
from ephemera.errors import EntryNotFoundError  # noqa: E402
from ephemera.models import Entry  # noqa: E402
from ephemera.repositories import entries_repo  # noqa: E402
from fakes import FakeDB  # noqa: E402


def _entry(slug="abcdefghijkl", **kw):
    values = dict(
        slug=slug,
        name="report.pdf",
        sum="x" * 43,
        size=10,
        timestamp=datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc),
        lifetime=datetime(2024, 5, 2, 12, 0, 0, tzinfo=timezone.utc),
    )
    values.update(kw)
    return Entry(**values)


class EntriesRepoTests(IsolatedAsyncioTestCase):
    def setUp(self):
        self.db = FakeDB()
        patcher = patch("ephemera.repositories.entries_repo.get_db", return_value=self.db)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_create_then_lookup(self):
        await entries_repo.create_entry(_entry())
        got = await entries_repo.lookup_entry("abcdefghijkl")

        self.assertEqual(got.name, "report.pdf")
        self.assertEqual(got.size, 10)
        # stored values come back naive; they are read as UTC
        self.assertEqual(got.timestamp.tzinfo, timezone.utc)
        self.assertEqual(got.timestamp, datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc))
        self.assertEqual(got.lifetime, datetime(2024, 5, 2, 12, 0, 0, tzinfo=timezone.utc))

    async def test_forever_entry(self):
        await entries_repo.create_entry(_entry(lifetime=None))
        got = await entries_repo.lookup_entry("abcdefghijkl")
        self.assertIsNone(got.lifetime)
        self.assertFalse(got.expired(datetime.now(timezone.utc) + timedelta(days=3650)))

    async def test_missing(self):
        with self.assertRaises(EntryNotFoundError):
            await entries_repo.lookup_entry("nope")

    async def test_duplicate_slug(self):
        await entries_repo.create_entry(_entry())
        with self.assertRaises(DuplicateKeyError):
            await entries_repo.create_entry(_entry(name="other.txt"))
        got = await entries_repo.lookup_entry("abcdefghijkl")
        self.assertEqual(got.name, "report.pdf")

    async def test_backend_errors_propagate(self):
        self.db.entries.fail_find = RuntimeError("socket closed")
        with self.assertRaises(RuntimeError):
            await entries_repo.lookup_entry("abcdefghijkl")

    async def test_ping(self):
        await entries_repo.ping()
        self.db.ping_error = RuntimeError("down")
        with self.assertRaises(RuntimeError):
            await entries_repo.ping()


class EntryModelTests(TestCase):
    def test_expiry_boundary(self):
        e = _entry()
        self.assertFalse(e.expired(e.lifetime - timedelta(microseconds=1)))
        self.assertTrue(e.expired(e.lifetime))

    def test_remaining_is_whole_seconds_and_never_negative(self):
        e = _entry()
        self.assertEqual(e.remaining(e.lifetime - timedelta(seconds=90, milliseconds=500)), 90)
        self.assertEqual(e.remaining(e.lifetime + timedelta(seconds=5)), 0)
        self.assertEqual(_entry(lifetime=None).remaining(e.timestamp), 0)

    def test_document_round_trip(self):
        e = _entry()
        doc = e.to_document()
        self.assertEqual(doc["_id"], e.slug)
        self.assertNotIn("slug", doc)
        self.assertEqual(Entry.from_document(doc), e)


class MongoGetterTests(TestCase):
    def test_get_db_before_connect(self):
        with patch.object(mongo, "_db", None):
            with self.assertRaises(RuntimeError):
                mongo.get_db()


class MongoConnectTests(IsolatedAsyncioTestCase):
    def _client(self, ping_error=None):
        db = MagicMock()
        db.command = AsyncMock(side_effect=ping_error)
        db.entries.create_index = AsyncMock()
        client = MagicMock()
        client.__getitem__.return_value = db
        return client, db

    async def test_connect_pings_and_indexes_once(self):
        client, db = self._client()
        with patch.object(mongo, "_db", None), patch.object(mongo, "_client", None), \
                patch("ephemera.db.mongo.AsyncIOMotorClient", return_value=client) as factory:
            await mongo.connect()
            await mongo.connect()
            self.assertIs(mongo.get_db(), db)
            await mongo.disconnect()
            with self.assertRaises(RuntimeError):
                mongo.get_db()

        factory.assert_called_once()
        self.assertFalse(factory.call_args.kwargs["tz_aware"])
        db.command.assert_awaited_once_with("ping")
        db.entries.create_index.assert_awaited_once_with([("lifetime", 1)], sparse=True)
        client.close.assert_called_once()

    async def test_failed_ping_leaves_nothing_connected(self):
        client, _ = self._client(ping_error=RuntimeError("no servers"))
        with patch.object(mongo, "_db", None), patch.object(mongo, "_client", None), \
                patch("ephemera.db.mongo.AsyncIOMotorClient", return_value=client):
            with self.assertRaises(RuntimeError):
                await mongo.connect()
            with self.assertRaises(RuntimeError):
                mongo.get_db()
        client.close.assert_called_once()
