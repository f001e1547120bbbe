import collections
import datetime
import logging

import discord
from discord.ext import commands

from . import config

log = logging.getLogger(__name__)

PLUGIN_DESC = "__curator_plugin_desc__"
COG_DESC = "__curator_cog_desc__"

DEFAULT_PLUGINS = [
    "curator.plugins.database",
    "curator.plugins.command_errors",
    "curator.plugins.permissions",
]


def dcog(depends=None, pass_bot=False):
    """Mark a Cog class for dependency injected loading.

    The cog is constructed as ``cls([bot,] config_group, *depends)`` once every
    cog named in depends is loaded.
    """
    def real_decorator(cls):
        setattr(cls, PLUGIN_DESC, PluginDesc(
            depends=depends or [],
            pass_bot=pass_bot
        ))
        return cls
    return real_decorator


def _is_submodule(parent, child):
    return parent == child or child.startswith(parent + ".")


PluginDesc = collections.namedtuple("PluginDesc", "depends pass_bot")
CogDesc = collections.namedtuple("CogDesc", "load_time")


def default_intents():
    intents = discord.Intents.default()
    # Approver lookup walks guild members.
    intents.members = True
    intents.message_content = True
    return intents


class CuratorBot(commands.Bot):

    def __init__(self, *args, conf="config.yml", **kwargs):
        self._config = config.FileConfiguration(conf)
        self._config.load()
        cgroup = self._config.root
        try:
            self.prefix = cgroup.register("prefix", default="curator ")
            self.token = cgroup.register("token")
            self.plugins = cgroup.register("plugins", default=list(DEFAULT_PLUGINS))
        finally:
            # Raise and fail to start on invalid core config
            self._config.save()

        self._curator_unloaded_cogs = {}
        kwargs.setdefault("intents", default_intents())
        super().__init__(self.prefix.value, *args, **kwargs)

    async def setup_hook(self):
        for plugin in self.plugins():
            await self.load_extension(plugin)

    async def start(self, *args, **kwargs):
        await super().start(self.token.value, *args, **kwargs)

    async def on_error(self, event, *args, **kwargs):
        log.exception(
            "Unhandled exception in %s\nargs: %s\nkwargs: %s\n",
            event, args, kwargs)

    async def add_cog(self, cog, **kwargs):
        """Tries to load a cog.

        dcog classes are constructed here. If not all of their dependencies
        are loaded, loading is deferred until they are.
        """
        desc = getattr(cog, PLUGIN_DESC, None)
        if not desc or not isinstance(cog, type):
            log.debug("Loading cog %s", cog)
            return await super().add_cog(cog, **kwargs)

        cls = cog
        depends = [self.get_cog(name) for name in desc.depends]
        if not all(depends):
            log.debug("Deferring %s until %s are loaded", cls.__name__, desc.depends)
            self._curator_unloaded_cogs[cls.__name__] = cls
            return

        self._config.load()
        cgroup = self._config.root.add_group(config.snakify(cls.__name__))

        depends.insert(0, cgroup)
        if desc.pass_bot:
            depends.insert(0, self)

        try:
            cog = cls(*depends)
        finally:
            self._config.save()
        await super().add_cog(cog, **kwargs)
        setattr(cog, COG_DESC, CogDesc(datetime.datetime.now(datetime.timezone.utc)))
        log.debug("Loaded dcog %s.%s", cls.__module__, cls.__name__)

        # Try loading previously deferred cogs.
        unloaded_cogs = self._curator_unloaded_cogs
        self._curator_unloaded_cogs = {}
        for unloaded in unloaded_cogs.values():
            await self.add_cog(unloaded)

    async def remove_cog(self, name, *, remove=True, **kwargs):
        """Unloads a cog.

        Name of a cog must be its class name.
        Cogs depending on this one are unloaded too, and reloaded when it
        comes back. remove=False parks this cog the same way.
        """
        cog = self.get_cog(name)

        if remove:
            self._curator_unloaded_cogs.pop(name, None)
        elif cog:
            self._curator_unloaded_cogs[name] = type(cog)

        if not cog:
            return None

        if hasattr(cog, PLUGIN_DESC):
            await self.unload_cog_deps(cog)
            self._config.root.remove_group(config.snakify(name))

        log.debug("Unloading cog %s", name)
        return await super().remove_cog(name, **kwargs)

    async def unload_cog_deps(self, unloading_cog):
        for cog_name, cog_inst in self.cogs.copy().items():
            desc = getattr(cog_inst, PLUGIN_DESC, None)
            if not desc:
                continue

            if type(unloading_cog).__name__ in desc.depends:
                await self.remove_cog(cog_name, remove=False)

    async def unload_extension(self, name, *, package=None):
        """Also forget deferred cogs that came from the extension."""
        await super().unload_extension(name, package=package)

        for cog_name, cls in list(self._curator_unloaded_cogs.items()):
            if _is_submodule(name, cls.__module__):
                del self._curator_unloaded_cogs[cog_name]
