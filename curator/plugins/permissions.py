"""Discord side of the permission engine.

Commands opt in with the check decorator:

@commands.command()
@permissions.check("object:game:create:{serverId}")
async def create_game(self, ctx):
    ...

or, for checks that depend on arguments, from inside the command:

    await self.bot.get_cog("Permissions").ensure(
        ctx, ["object:game:remove:{serverId}:{gameId}"], context={"gameId": game_id})

Both raise PermissionDenied when the engine says no. Approval prompts are
posted in the channel the command came from, or DMed to the approver if that
fails.
"""
import asyncio
from dataclasses import dataclass
import logging
import typing

import discord
from discord.ext import commands
from discord.ext.commands import errors

from curator import dcog, Cog
from curator.config import InvalidConfig
from curator.permission import (
    ActorRef, ApprovalTransport, ApprovalTransportError, ApprovalWorkflow,
    ApproverDirectory, DEFAULT_TIMEOUT, Decision, PostgresGrantStore, resolve)
from curator.permission.rules import parse_state

from .common import utils

log = logging.getLogger(__name__)


DECISION_LABELS = {
    Decision.approve_once: "Approved once",
    Decision.approve_forever: "Approved forever",
    Decision.deny: "Denied",
}

NO_RESPONSE = "(no response)"


class PermissionDenied(errors.CheckFailure):
    """Raised when a permission check fails. Carries the ResolveResult."""

    def __init__(self, result):
        self.result = result
        message = result.reason or "Permission denied"
        if result.tokens:
            message = "%s (%s)" % (message, result.describe_tokens())
        super().__init__(message)


def validate_declarations(value):
    if value is None:
        return
    if not isinstance(value, dict):
        raise InvalidConfig("declarations must be a mapping of token to state")
    for token, state in value.items():
        if parse_state(state) is None and str(state).strip().lower() != "undefined":
            raise InvalidConfig("unknown state %r for %s" % (state, token))


def validate_timeout(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise InvalidConfig("approval_timeout must be a positive number of seconds")


def actor_from_member(member):
    """ActorRef for a discord Member (or User, outside of guilds)."""
    if member is None:
        return None
    guild = getattr(member, "guild", None)
    if guild is None:
        return ActorRef(None, str(member.id))
    is_admin = member.id == guild.owner_id or member.guild_permissions.administrator
    return ActorRef(str(guild.id), str(member.id), is_admin)


class GuildApproverDirectory(ApproverDirectory):
    """Approvers are guild members: designated resolvers, else administrators."""

    def __init__(self, bot, store):
        self.bot = bot
        self.store = store

    def _guild(self, guild_id):
        return self.bot.get_guild(int(guild_id))

    async def designated(self, guild_id):
        guild = self._guild(guild_id)
        if guild is None:
            return []
        members = []
        for user_id in await self.store.resolvers(guild_id):
            member = guild.get_member(int(user_id))
            if member is None:
                log.debug("Resolver %s is no longer in guild %s", user_id, guild_id)
                continue
            if not member.bot:
                members.append(member)
        return members

    async def administrators(self, guild_id):
        guild = self._guild(guild_id)
        if guild is None:
            return []
        return [
            member for member in guild.members
            if not member.bot and member.guild_permissions.administrator]


def describe_request(request, approver):
    lines = [
        "{}, <@{}> is asking for permission: `{}`".format(
            approver.mention, request.actor.user_id, request.describe_tokens()),
    ]
    if request.reason:
        lines.append("Reason: %s" % request.reason)
    return "\n".join(lines)


class ApprovalView(discord.ui.View):
    """Approve once / approve forever / deny buttons for a single approver."""

    def __init__(self, approver_id):
        super().__init__(timeout=None)
        self.approver_id = approver_id
        self.decision = asyncio.get_running_loop().create_future()

    async def interaction_check(self, interaction):
        if interaction.user.id != self.approver_id:
            await interaction.response.send_message(
                "Only the chosen approver can answer this.", ephemeral=True)
            return False
        return True

    async def _answer(self, interaction, decision):
        if not self.decision.done():
            self.decision.set_result(decision)
        self.stop()
        await interaction.response.edit_message(
            content="{}\n\n**{}** by {}".format(
                interaction.message.content, DECISION_LABELS[decision],
                interaction.user.mention),
            view=None)

    @discord.ui.button(label="Approve once", style=discord.ButtonStyle.success,
                       custom_id="perm_approve_once")
    async def approve_once(self, interaction, button):
        await self._answer(interaction, Decision.approve_once)

    @discord.ui.button(label="Approve forever", style=discord.ButtonStyle.primary,
                       custom_id="perm_approve_forever")
    async def approve_forever(self, interaction, button):
        await self._answer(interaction, Decision.approve_forever)

    @discord.ui.button(label="Deny", style=discord.ButtonStyle.danger,
                       custom_id="perm_deny")
    async def deny(self, interaction, button):
        await self._answer(interaction, Decision.deny)


@dataclass
class ApprovalPrompt:
    message: discord.Message
    view: ApprovalView


class DiscordApprovalTransport(ApprovalTransport):
    """Posts the prompt in channel, falling back to a DM to the approver."""

    def __init__(self, channel=None):
        self.channel = channel

    async def present(self, request, approver):
        content = describe_request(request, approver)
        view = ApprovalView(approver.id)
        if self.channel is not None:
            try:
                message = await self.channel.send(content, view=view)
                return ApprovalPrompt(message, view)
            except discord.HTTPException:
                log.info("Could not post approval prompt in %s, trying DM", self.channel)
        try:
            message = await approver.send(content, view=view)
        except discord.HTTPException as e:
            view.stop()
            raise ApprovalTransportError("Could not reach approver %s: %s" % (approver, e)) from e
        return ApprovalPrompt(message, view)

    async def collect(self, prompt):
        return await prompt.view.decision

    async def close(self, prompt, decision):
        prompt.view.stop()
        if decision in DECISION_LABELS:
            # The button press already edited the prompt.
            return
        await prompt.message.edit(
            content="{}\n\n{}".format(prompt.message.content, NO_RESPONSE), view=None)


def check(*templates, **context):
    """Command check resolving templates for the invoking member.

    Keyword arguments are extra placeholder values.
    """
    async def predicate(ctx):
        cog = ctx.bot.get_cog("Permissions")
        if not cog:
            raise errors.CheckFailure("This command requires the Permissions cog to be loaded")
        await cog.ensure(ctx, templates, context=context)
        return True
    return commands.check(predicate)


def command_context(ctx, extra=None):
    context = {
        "userId": ctx.author.id,
        "channelId": ctx.channel.id if ctx.channel else None,
        "serverId": ctx.guild.id if ctx.guild else None,
        "command": ctx.command.qualified_name if ctx.command else None,
    }
    context.update(extra or {})
    return context


@dcog(depends=["Database"], pass_bot=True)
class Permissions(Cog):
    """Permission tokens, approval prompts, and forever grants."""

    def __init__(self, bot, config, database):
        self.bot = bot
        self.approval_timeout = config.register(
            "approval_timeout", default=DEFAULT_TIMEOUT, validator=validate_timeout)
        self.declarations = config.register(
            "declarations", default={}, validator=validate_declarations)
        self.store = PostgresGrantStore(database)
        self.directory = GuildApproverDirectory(bot, self.store)

    async def cog_load(self):
        await self.store.create_tables()

    def workflow(self, channel):
        return ApprovalWorkflow(
            DiscordApprovalTransport(channel), self.directory, self.store,
            timeout=self.approval_timeout())

    async def resolve(self, ctx, templates, context=None, skip_approval=False):
        """Resolve templates for ctx.author, never raises."""
        actor = actor_from_member(ctx.author)
        return await resolve(
            templates,
            context=command_context(ctx, context),
            actor=actor,
            declarations=dict(self.declarations() or {}),
            skip_approval=skip_approval,
            request_approval=self.workflow(ctx.channel).for_actor(actor),
            grants=self.store)

    async def ensure(self, ctx, templates, context=None, skip_approval=False):
        """Resolve templates for ctx.author, raise PermissionDenied on failure."""
        result = await self.resolve(ctx, templates, context, skip_approval)
        if not result.success:
            log.info("Denied %s to %s: %s", result.describe_tokens(), ctx.author, result.reason)
            raise PermissionDenied(result)
        return result

    @commands.group(invoke_without_command=True)
    @commands.guild_only()
    async def permission(self, ctx):
        """Permission approvers and forever grants."""
        await ctx.send_help(ctx.command)

    @permission.command()
    async def resolver(self, ctx, member: discord.Member):
        """Let member answer approval requests. Server owner only."""
        if ctx.author.id != ctx.guild.owner_id:
            raise errors.CheckFailure("Only the server owner can pick approvers.")
        if member.bot:
            raise errors.BadArgument("Bots can't approve requests.")
        await self.store.add_resolver(ctx.guild.id, member.id, granted_by=ctx.author.id)
        await ctx.send(utils.clean_mentions("%s can now approve permission requests." % member))

    @permission.command()
    async def unresolver(self, ctx, member: discord.Member):
        """Stop member from answering approval requests. Server owner only."""
        if ctx.author.id != ctx.guild.owner_id:
            raise errors.CheckFailure("Only the server owner can pick approvers.")
        if await self.store.remove_resolver(ctx.guild.id, member.id):
            await ctx.send(utils.clean_mentions("%s no longer approves permission requests." % member))
        else:
            await ctx.send(utils.clean_mentions("%s wasn't an approver." % member))

    @permission.command()
    async def grants(self, ctx, member: typing.Optional[discord.Member] = None):
        """List forever grants for member (default: you)."""
        member = member or ctx.author
        grants = await self.store.grants_for(ctx.guild.id, member.id)
        if not grants:
            await ctx.send(utils.clean_mentions("%s has no forever grants." % member))
            return
        await ctx.send(utils.code_block("\n".join(
            "{} (by {}, {:%Y-%m-%d})".format(grant.key, grant.granted_by or "?", grant.created_at)
            for grant in grants)))

    @permission.command()
    @commands.has_guild_permissions(administrator=True)
    async def revoke(self, ctx, member: discord.Member, token: str):
        """Revoke a forever grant."""
        if await self.store.revoke_forever(ctx.guild.id, member.id, token):
            await ctx.send(utils.clean_mentions("Revoked `%s` from %s." % (token, member)))
        else:
            await ctx.send(utils.clean_mentions("%s has no grant `%s`." % (member, token)))

    @permission.command(name="check")
    async def check_(self, ctx, *templates):
        """Show how templates resolve for you, without asking anyone."""
        if not templates:
            raise errors.BadArgument("Give at least one template.")
        result = await self.resolve(ctx, list(templates), skip_approval=True)
        lines = [
            "allowed: %s" % ("yes" if result.success else "no"),
            "reason: %s" % (result.reason or "-"),
            "approvable: %s" % ("yes" if result.requires_approval else "no"),
            "tokens: %s" % (result.describe_tokens() or "-"),
        ]
        await ctx.send(utils.code_block("\n".join(lines)))


async def setup(bot):
    await bot.add_cog(Permissions)
