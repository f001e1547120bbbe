import logging

import asyncpg

from curator import dcog, Cog

from .common.utils import AsyncContextWrapper


log = logging.getLogger(__name__)


@dcog()
class Database(Cog):
    """Owns the asyncpg pool other cogs borrow connections from."""

    def __init__(self, config):
        self.dsn = config.register("dsn")
        self.min_size = config.register("min_size", default=1)
        self.max_size = config.register("max_size", default=10)
        self._engine = None

    async def cog_load(self):
        log.info("Connecting to database")
        self._engine = await asyncpg.create_pool(
            self.dsn(), min_size=self.min_size(), max_size=self.max_size())

    async def cog_unload(self):
        if self._engine is not None:
            await self._engine.close()

    async def _acquire(self):
        return self._engine.acquire()

    def acquire(self):
        return AsyncContextWrapper(self._acquire())


async def setup(bot):
    await bot.add_cog(Database)
