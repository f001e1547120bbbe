from discord.ext.commands import Cog

from .core import dcog, CuratorBot

__all__ = ["Cog", "dcog", "CuratorBot"]
