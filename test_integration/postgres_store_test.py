"""Runs against a real postgres, set CURATOR_TEST_DSN to enable."""
import os
import unittest
import uuid

from curator import config
from curator.permission.store import PostgresGrantStore
from curator.permission.tokens import normalize_token
from curator.plugins.database import Database

from common import async_test

DSN = os.environ.get("CURATOR_TEST_DSN")


@unittest.skipUnless(DSN, "CURATOR_TEST_DSN not set")
class TestPostgresGrantStore(unittest.TestCase):

    async def connect(self):
        conf = config.StringConfiguration("database:\n  dsn: '%s'\n" % DSN)
        database = Database(conf.root.add_group("database"))
        await database.cog_load()
        store = PostgresGrantStore(database)
        await store.create_tables()
        return database, store

    @async_test
    async def test_grants(self):
        database, store = await self.connect()
        guild_id = "test-%s" % uuid.uuid4()
        try:
            await store.grant_forever(guild_id, "u1", "cmd:create", granted_by="a1")
            await store.grant_forever(guild_id, "u1", ["cmd", "create"], granted_by="a2")

            grants = await store.grants_for(guild_id, "u1")
            self.assertEqual(1, len(grants))
            self.assertEqual("a1", grants[0].granted_by)
            self.assertTrue(await store.has_forever_grant(
                guild_id, "u1", [normalize_token("cmd:create:42")]))

            self.assertTrue(await store.revoke_forever(guild_id, "u1", "cmd:create"))
            self.assertEqual([], await store.grants_for(guild_id, "u1"))
        finally:
            async with database.acquire() as conn:
                await conn.execute("DELETE FROM permission_grants WHERE guild_id = $1", guild_id)
            await database.cog_unload()

    @async_test
    async def test_resolvers(self):
        database, store = await self.connect()
        guild_id = "test-%s" % uuid.uuid4()
        try:
            await store.add_resolver(guild_id, 10)
            await store.add_resolver(guild_id, 10)
            self.assertEqual(["10"], await store.resolvers(guild_id))
            self.assertTrue(await store.remove_resolver(guild_id, 10))
            self.assertEqual([], await store.resolvers(guild_id))
        finally:
            await database.cog_unload()
