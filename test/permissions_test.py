import types
import unittest

import discord

from curator import config
from curator.permission import ActorRef, Decision, MemoryGrantStore, ResolveResult
from curator.permission.approval import ApprovalRequest, ApprovalTransportError
from curator.permission.tokens import normalize_token
from curator.plugins import command_errors
from curator.plugins.permissions import (
    NO_RESPONSE, DiscordApprovalTransport, GuildApproverDirectory, PermissionDenied,
    Permissions, actor_from_member, validate_declarations, validate_timeout)

from common import async_test


def make_guild(members=(), owner_id=1, guild_id=100):
    guild = types.SimpleNamespace(id=guild_id, owner_id=owner_id, members=list(members))
    guild.get_member = lambda user_id: next((m for m in guild.members if m.id == user_id), None)
    return guild


def make_member(user_id, guild=None, admin=False, bot=False):
    member = types.SimpleNamespace(
        id=user_id, bot=bot, mention="<@%d>" % user_id, guild=guild,
        guild_permissions=types.SimpleNamespace(administrator=admin))
    if guild is not None:
        guild.members.append(member)
    return member


class FakeResponse:
    status = 403
    reason = "Forbidden"


class FakeMessage:

    def __init__(self, content, view):
        self.content = content
        self.view = view
        self.edits = []

    async def edit(self, content=None, view=None):
        self.edits.append((content, view))
        self.content = content


class FakeChannel:

    def __init__(self, fail=False):
        self.id = 200
        self.fail = fail
        self.messages = []

    async def send(self, content, view=None):
        if self.fail:
            raise discord.Forbidden(FakeResponse(), "Missing Access")
        message = FakeMessage(content, view)
        self.messages.append(message)
        return message


class TestActorFromMember(unittest.TestCase):

    def test_member(self):
        guild = make_guild(owner_id=1)
        self.assertEqual(ActorRef("100", "5", False), actor_from_member(make_member(5, guild)))
        self.assertEqual(ActorRef("100", "6", True), actor_from_member(make_member(6, guild, admin=True)))
        self.assertEqual(ActorRef("100", "1", True), actor_from_member(make_member(1, guild)))

    def test_user_outside_guild(self):
        self.assertEqual(ActorRef(None, "5"), actor_from_member(make_member(5)))
        self.assertIsNone(actor_from_member(None))


class TestValidators(unittest.TestCase):

    def test_declarations(self):
        validate_declarations(None)
        validate_declarations({"a": "allowed", "b": "Once", "c": "undefined"})
        with self.assertRaises(config.InvalidConfig):
            validate_declarations({"a": "yes"})
        with self.assertRaises(config.InvalidConfig):
            validate_declarations(["a"])

    def test_timeout(self):
        validate_timeout(300)
        validate_timeout(0.5)
        for bad in (0, -5, "300", True):
            with self.assertRaises(config.InvalidConfig):
                validate_timeout(bad)


class TestPermissionDenied(unittest.TestCase):

    def test_message(self):
        result = ResolveResult(False, [normalize_token("cmd:create")], "Explicitly forbidden")
        exp = PermissionDenied(result)
        self.assertEqual("Explicitly forbidden (cmd:create)", str(exp))
        self.assertIs(result, exp.result)
        self.assertEqual("Permission denied", str(PermissionDenied(ResolveResult(False))))

    def test_error_message(self):
        exp = PermissionDenied(ResolveResult(False, [], "Token(s) not defined"))
        self.assertEqual(
            "Permission denied: Token(s) not defined",
            command_errors.error_message(exp, ctx=None))


class TestGuildApproverDirectory(unittest.TestCase):

    @async_test
    async def test_designated(self):
        guild = make_guild()
        resolver = make_member(10, guild)
        make_member(11, guild, bot=True)
        store = MemoryGrantStore()
        for user_id in (10, 11, 12):
            await store.add_resolver(guild.id, user_id)

        bot = types.SimpleNamespace(get_guild=lambda guild_id: guild)
        directory = GuildApproverDirectory(bot, store)
        self.assertEqual([resolver], await directory.designated("100"))

    @async_test
    async def test_administrators(self):
        guild = make_guild()
        admin = make_member(10, guild, admin=True)
        make_member(11, guild)
        make_member(12, guild, admin=True, bot=True)

        bot = types.SimpleNamespace(get_guild=lambda guild_id: guild)
        directory = GuildApproverDirectory(bot, MemoryGrantStore())
        self.assertEqual([admin], await directory.administrators("100"))

    @async_test
    async def test_unknown_guild(self):
        bot = types.SimpleNamespace(get_guild=lambda guild_id: None)
        directory = GuildApproverDirectory(bot, MemoryGrantStore())
        self.assertEqual([], await directory.designated("100"))
        self.assertEqual([], await directory.administrators("100"))


class TestDiscordApprovalTransport(unittest.TestCase):

    def request(self):
        return ApprovalRequest(
            ActorRef("100", "5"), [normalize_token("cmd:create:42")], "Requires one-time approval")

    @async_test
    async def test_posts_in_channel(self):
        channel = FakeChannel()
        approver = make_member(10)
        transport = DiscordApprovalTransport(channel)

        prompt = await transport.present(self.request(), approver)

        self.assertIs(channel.messages[0], prompt.message)
        self.assertIn("<@10>", prompt.message.content)
        self.assertIn("<@5>", prompt.message.content)
        self.assertIn("cmd:create:42", prompt.message.content)
        self.assertEqual(
            ["perm_approve_once", "perm_approve_forever", "perm_deny"],
            [item.custom_id for item in prompt.view.children])

        prompt.view.decision.set_result(Decision.approve_once)
        self.assertIs(Decision.approve_once, await transport.collect(prompt))

    @async_test
    async def test_dm_fallback(self):
        approver = make_member(10)
        dm = FakeChannel()
        approver.send = dm.send

        prompt = await DiscordApprovalTransport(FakeChannel(fail=True)).present(self.request(), approver)
        self.assertIs(dm.messages[0], prompt.message)

    @async_test
    async def test_unreachable(self):
        approver = make_member(10)
        approver.send = FakeChannel(fail=True).send

        with self.assertRaises(ApprovalTransportError):
            await DiscordApprovalTransport(FakeChannel(fail=True)).present(self.request(), approver)

    @async_test
    async def test_close_on_timeout(self):
        transport = DiscordApprovalTransport(FakeChannel())
        prompt = await transport.present(self.request(), make_member(10))

        await transport.close(prompt, Decision.timeout)

        content, view = prompt.message.edits[0]
        self.assertTrue(content.endswith(NO_RESPONSE))
        self.assertIsNone(view)
        self.assertTrue(prompt.view.is_finished())

    @async_test
    async def test_close_after_answer(self):
        transport = DiscordApprovalTransport(FakeChannel())
        prompt = await transport.present(self.request(), make_member(10))

        await transport.close(prompt, Decision.deny)

        self.assertEqual([], prompt.message.edits)


class TestPermissionsCog(unittest.TestCase):

    def make_cog(self, declarations, guild):
        conf = config.StringConfiguration("")
        group = conf.root.add_group("permissions")
        cog = Permissions(types.SimpleNamespace(get_guild=lambda guild_id: guild), group, None)
        conf._data["permissions"]["declarations"] = declarations
        cog.store = MemoryGrantStore()
        cog.directory.store = cog.store
        return cog

    def make_ctx(self, guild, author):
        return types.SimpleNamespace(
            guild=guild, author=author, channel=FakeChannel(),
            command=types.SimpleNamespace(qualified_name="game create"))

    @async_test
    async def test_allowed(self):
        guild = make_guild()
        cog = self.make_cog({"object:game:create": "allowed"}, guild)
        result = await cog.ensure(
            self.make_ctx(guild, make_member(5, guild)), ["object:game:create:{serverId}"])
        self.assertTrue(result.success)
        self.assertEqual("object:game:create:100", str(result.tokens[0]))

    @async_test
    async def test_forbidden(self):
        guild = make_guild()
        cog = self.make_cog({"object:game": "forbidden"}, guild)
        with self.assertRaises(PermissionDenied) as cm:
            await cog.ensure(self.make_ctx(guild, make_member(5, guild)), ["object:game:create"])
        self.assertFalse(cm.exception.result.requires_approval)

    @async_test
    async def test_no_approver(self):
        guild = make_guild()
        cog = self.make_cog({"object:game": "once"}, guild)
        with self.assertRaises(PermissionDenied) as cm:
            await cog.ensure(self.make_ctx(guild, make_member(5, guild)), ["object:game:create"])
        self.assertIs(Decision.no_admin, cm.exception.result.decision)

    @async_test
    async def test_dry_run(self):
        guild = make_guild()
        cog = self.make_cog({}, guild)
        ctx = self.make_ctx(guild, make_member(5, guild))
        make_member(10, guild, admin=True)

        result = await cog.resolve(ctx, ["object:game:create"], skip_approval=True)
        self.assertFalse(result.success)
        self.assertTrue(result.requires_approval)
        self.assertEqual([], ctx.channel.messages)

    @async_test
    async def test_forever_grant(self):
        guild = make_guild()
        cog = self.make_cog({"object:game": "once"}, guild)
        await cog.store.grant_forever(guild.id, 5, "object:game:create")

        result = await cog.ensure(self.make_ctx(guild, make_member(5, guild)), ["object:game:create:{serverId}"])
        self.assertTrue(result.success)
