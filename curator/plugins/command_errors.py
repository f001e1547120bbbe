import logging
import traceback

import discord
from discord.ext.commands import errors

from curator import dcog, Cog

from .common import utils
from .permissions import PermissionDenied

log = logging.getLogger(__name__)


def tbtpl(exp):
    return (type(exp), exp, exp.__traceback__)


IGNORED = (
    errors.CommandNotFound,
    errors.DisabledCommand,
)

ERROR_MAP = utils.TypeMap({
    errors.ConversionError: None,
    errors.BadArgument: "Bad argument: {exp}",
    errors.MissingRequiredArgument:
        "Missing argument: {exp.param.name}. Run `` {ctx.prefix}help "
        "{ctx.command.qualified_name} `` for more info.",
    errors.NoPrivateMessage: "This command only works in guilds.",
    PermissionDenied: "Permission denied: {exp}",
    errors.CommandError: "Error running command: {exp}",
    errors.CheckFailure: "Permissions error: {exp}",
    discord.errors.Forbidden: "I don't have permission: {exp.text}",
})


def error_message(exp, ctx):
    """User facing message for exp, or None if it's unexpected."""
    msg = ERROR_MAP.lookup(type(exp))
    if msg:
        return utils.clean_mentions(msg.format(exp=exp, ctx=ctx))

    if isinstance(exp, discord.errors.HTTPException) and exp.status in range(500, 600):
        return "Discord broke, try again."
    return None


@dcog()
class CommandErrors(Cog):
    """Central cog for generic error messages.

    This handles error messages for generic error types e.g. BadArgument
    """

    def __init__(self, config):
        self.verbose_errors = config.register("verbose_errors", default=False)

    @Cog.listener()
    async def on_command_error(self, ctx, exp):
        main_exp = exp

        if isinstance(exp, IGNORED):
            return

        if isinstance(exp, errors.CommandInvokeError):
            exp = exp.original

        if isinstance(exp, errors.CheckFailure):
            log.debug("Check failure for '%s' in '%s'", ctx.command.qualified_name,
                      ctx.message.content, exc_info=tbtpl(main_exp))

        msg = error_message(exp, ctx)
        if msg:
            await ctx.send(msg)
            return

        if self.verbose_errors():
            msg = utils.code_block("".join(traceback.format_exception(*tbtpl(main_exp))))
        else:
            msg = "An unknown error occured."

        log.error("Unhandled error dispatching '%s' in '%s'", ctx.command.qualified_name,
                  ctx.message.content, exc_info=tbtpl(main_exp))
        await ctx.send(msg)


async def setup(bot):
    await bot.add_cog(CommandErrors)
