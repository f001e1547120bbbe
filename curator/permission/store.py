"""Forever grants and resolver designations.

A forever grant is (guild, user, token): the user may do anything the token
covers in that guild, without asking again. A resolver is a user picked by the
guild owner to answer approval requests.

Both are upserts keyed on their identifying columns; granting twice only
bumps updated_at.
"""
import abc
from dataclasses import dataclass
import datetime
import logging
import typing

from lru import LRU

from .tokens import Token, format_token, normalize_token

log = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS permission_grants (
    guild_id text NOT NULL,
    user_id text NOT NULL,
    token text NOT NULL,
    granted_by text,
    created_at timestamptz NOT NULL DEFAULT now(),
    updated_at timestamptz NOT NULL DEFAULT now(),
    PRIMARY KEY (guild_id, user_id, token)
);
CREATE TABLE IF NOT EXISTS permission_resolvers (
    guild_id text NOT NULL,
    user_id text NOT NULL,
    granted_by text,
    created_at timestamptz NOT NULL DEFAULT now(),
    updated_at timestamptz NOT NULL DEFAULT now(),
    PRIMARY KEY (guild_id, user_id)
);
"""


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def _id(value):
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class Grant:
    guild_id: str
    user_id: str
    token: Token
    granted_by: typing.Optional[str] = None
    created_at: typing.Optional[datetime.datetime] = None
    updated_at: typing.Optional[datetime.datetime] = None

    @property
    def key(self):
        return format_token(self.token)


class GrantStore(abc.ABC):
    """Storage interface for forever grants and resolvers.

    Ids are stored as strings. Calls with a missing guild or user id are
    no-ops (and lookups find nothing).
    """

    @abc.abstractmethod
    async def _upsert_grant(self, guild_id, user_id, token, granted_by):
        """Insert or touch a grant, return the stored Grant."""

    @abc.abstractmethod
    async def _delete_grant(self, guild_id, user_id, key):
        """Delete a grant, return whether it existed."""

    @abc.abstractmethod
    async def _fetch_grants(self, guild_id, user_id):
        """All Grants for the member."""

    @abc.abstractmethod
    async def add_resolver(self, guild_id, user_id, granted_by=None):
        """Designate user as an approver for guild."""

    @abc.abstractmethod
    async def remove_resolver(self, guild_id, user_id):
        """Remove the designation, return whether it existed."""

    @abc.abstractmethod
    async def resolvers(self, guild_id):
        """User ids designated as approvers for guild."""

    async def grant_forever(self, guild_id, user_id, token, granted_by=None):
        guild_id, user_id = _id(guild_id), _id(user_id)
        token = normalize_token(token)
        if not guild_id or not user_id or not token:
            log.debug("Not storing forever grant %s for %s/%s", format_token(token), guild_id, user_id)
            return None
        grant = await self._upsert_grant(guild_id, user_id, token, _id(granted_by))
        log.info("Stored forever grant %s for user %s in guild %s", grant.key, user_id, guild_id)
        return grant

    async def revoke_forever(self, guild_id, user_id, token):
        guild_id, user_id = _id(guild_id), _id(user_id)
        token = normalize_token(token)
        if not guild_id or not user_id or not token:
            return False
        return await self._delete_grant(guild_id, user_id, format_token(token))

    async def grants_for(self, guild_id, user_id):
        guild_id, user_id = _id(guild_id), _id(user_id)
        if not guild_id or not user_id:
            return []
        return await self._fetch_grants(guild_id, user_id)

    async def has_forever_grant(self, guild_id, user_id, tokens):
        """True if a stored grant equals, or is a prefix of, any of tokens."""
        grants = await self.grants_for(guild_id, user_id)
        if not grants:
            return False
        for token in tokens:
            token = normalize_token(token)
            if not token:
                continue
            for grant in grants:
                if token.startswith(grant.token):
                    return True
        return False


class MemoryGrantStore(GrantStore):
    """Process local store. Used in tests and when no database is configured."""

    def __init__(self):
        self._grants = {}
        self._resolvers = {}

    async def _upsert_grant(self, guild_id, user_id, token, granted_by):
        now = _utcnow()
        member_grants = self._grants.setdefault((guild_id, user_id), {})
        key = format_token(token)
        try:
            grant = member_grants[key]
        except KeyError:
            grant = member_grants[key] = Grant(
                guild_id, user_id, token, granted_by, created_at=now, updated_at=now)
        else:
            grant.updated_at = now
        return grant

    async def _delete_grant(self, guild_id, user_id, key):
        member_grants = self._grants.get((guild_id, user_id), {})
        return member_grants.pop(key, None) is not None

    async def _fetch_grants(self, guild_id, user_id):
        return list(self._grants.get((guild_id, user_id), {}).values())

    async def add_resolver(self, guild_id, user_id, granted_by=None):
        guild_id, user_id = _id(guild_id), _id(user_id)
        if not guild_id or not user_id:
            return
        now = _utcnow()
        guild_resolvers = self._resolvers.setdefault(guild_id, {})
        if user_id in guild_resolvers:
            guild_resolvers[user_id]["updated_at"] = now
        else:
            guild_resolvers[user_id] = {
                "granted_by": _id(granted_by), "created_at": now, "updated_at": now}

    async def remove_resolver(self, guild_id, user_id):
        return self._resolvers.get(_id(guild_id), {}).pop(_id(user_id), None) is not None

    async def resolvers(self, guild_id):
        return list(self._resolvers.get(_id(guild_id), {}))


def _grant_from_row(row):
    return Grant(
        row["guild_id"], row["user_id"], normalize_token(row["token"]),
        row["granted_by"], row["created_at"], row["updated_at"])


class PostgresGrantStore(GrantStore):
    """Grants in postgres, fronted by an in-memory LRU of per-member grants.

    database is anything with an ``acquire()`` async context manager yielding
    an asyncpg connection (the Database cog).
    """

    def __init__(self, database, cache_size=2048):
        self.database = database
        self._lru = LRU(cache_size)
        # bumped on every write, so a read that raced a write is not cached
        self._generations = {}

    async def create_tables(self):
        async with self.database.acquire() as conn:
            await conn.execute(SCHEMA)

    def _invalidate(self, guild_id, user_id):
        key = (guild_id, user_id)
        self._generations[key] = self._generations.get(key, 0) + 1
        if key in self._lru:
            del self._lru[key]

    async def _upsert_grant(self, guild_id, user_id, token, granted_by):
        async with self.database.acquire() as conn:
            row = await conn.fetchrow(
                "INSERT INTO permission_grants (guild_id, user_id, token, granted_by) "
                "VALUES ($1, $2, $3, $4) "
                "ON CONFLICT (guild_id, user_id, token) DO UPDATE SET updated_at = now() "
                "RETURNING *",
                guild_id, user_id, format_token(token), granted_by)
        self._invalidate(guild_id, user_id)
        return _grant_from_row(row)

    async def _delete_grant(self, guild_id, user_id, key):
        async with self.database.acquire() as conn:
            res = await conn.fetchrow(
                "DELETE FROM permission_grants "
                "WHERE guild_id = $1 AND user_id = $2 AND token = $3 RETURNING token",
                guild_id, user_id, key)
        self._invalidate(guild_id, user_id)
        return res is not None

    async def _fetch_grants(self, guild_id, user_id):
        key = (guild_id, user_id)
        cached = self._lru.get(key)
        if cached is not None:
            return cached
        generation = self._generations.get(key, 0)
        async with self.database.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM permission_grants "
                "WHERE guild_id = $1 AND user_id = $2 ORDER BY created_at",
                guild_id, user_id)
        grants = [_grant_from_row(row) for row in rows]
        if self._generations.get(key, 0) == generation:
            self._lru[key] = grants
        return grants

    async def add_resolver(self, guild_id, user_id, granted_by=None):
        guild_id, user_id = _id(guild_id), _id(user_id)
        if not guild_id or not user_id:
            return
        async with self.database.acquire() as conn:
            await conn.execute(
                "INSERT INTO permission_resolvers (guild_id, user_id, granted_by) "
                "VALUES ($1, $2, $3) "
                "ON CONFLICT (guild_id, user_id) DO UPDATE SET updated_at = now()",
                guild_id, user_id, _id(granted_by))

    async def remove_resolver(self, guild_id, user_id):
        async with self.database.acquire() as conn:
            res = await conn.fetchrow(
                "DELETE FROM permission_resolvers "
                "WHERE guild_id = $1 AND user_id = $2 RETURNING user_id",
                _id(guild_id), _id(user_id))
        return res is not None

    async def resolvers(self, guild_id):
        async with self.database.acquire() as conn:
            rows = await conn.fetch(
                "SELECT DISTINCT user_id FROM permission_resolvers WHERE guild_id = $1",
                _id(guild_id))
        return [row["user_id"] for row in rows]
