"""Ask a human to approve an action.

When evaluation says a human may approve (once-permissions, or tokens nobody
declared), one approver is picked at random and shown the request. They can
approve once, approve forever (which stores a forever grant), or deny. If they
don't answer within the timeout the request times out.

The UI is behind ApprovalTransport, and approver lookup behind
ApproverDirectory, so the workflow itself knows nothing about Discord.
"""
import abc
import asyncio
from dataclasses import dataclass, field
import datetime
from enum import Enum
import logging
import random
import typing

from .evaluator import ActorRef
from .tokens import Token, format_token

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5 * 60


class Decision(Enum):
    approve_once = "approve_once"
    approve_forever = "approve_forever"
    deny = "deny"
    no_admin = "no_admin"
    timeout = "timeout"

    @property
    def approved(self):
        return self in (Decision.approve_once, Decision.approve_forever)

    def __str__(self):
        return self.value


def parse_decision(value):
    if isinstance(value, Decision):
        return value
    try:
        return Decision(value)
    except ValueError:
        log.warning("Unknown approval decision %r, treating as deny", value)
        return Decision.deny


class ApprovalTransportError(Exception):
    """The approval request could not be shown to anyone."""


@dataclass
class ApprovalRequest:
    actor: ActorRef
    tokens: typing.List[Token]
    reason: typing.Optional[str] = None
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))

    @property
    def token(self):
        """The most specific requested token, the one a forever grant covers."""
        return self.tokens[0] if self.tokens else Token()

    def describe_tokens(self):
        return ", ".join(format_token(token) for token in self.tokens)


class ApprovalTransport(abc.ABC):
    """Shows a request to an approver and collects their answer."""

    @abc.abstractmethod
    async def present(self, request, approver):
        """Show request to approver, return a handle for collect/close.

        Raise if the approver can't be reached.
        """

    @abc.abstractmethod
    async def collect(self, prompt):
        """Wait for the approver's Decision. Cancelled on timeout."""

    async def close(self, prompt, decision):
        """Tidy up the prompt once the request is over."""


class ApproverDirectory(abc.ABC):

    @abc.abstractmethod
    async def designated(self, guild_id):
        """Approvers the guild owner picked explicitly."""

    @abc.abstractmethod
    async def administrators(self, guild_id):
        """Non-bot guild administrators."""


def approver_id(approver):
    return str(getattr(approver, "id", approver))


class ApprovalWorkflow:
    """Runs a single approval request to completion.

    Concurrent requests for the same actor and token are not merged, each
    picks its own approver.
    """

    def __init__(self, transport, directory, grants=None, timeout=DEFAULT_TIMEOUT, rng=None):
        self.transport = transport
        self.directory = directory
        self.grants = grants
        self.timeout = timeout
        self.rng = rng or random.Random()

    async def approvers(self, guild_id):
        """Designated resolvers if there are any, otherwise administrators."""
        try:
            pool = list(await self.directory.designated(guild_id))
        except Exception:
            log.exception("Failed to load designated approvers for guild %s", guild_id)
            pool = []
        if pool:
            log.info("Using %d designated approver(s) for guild %s", len(pool), guild_id)
            return pool
        try:
            pool = list(await self.directory.administrators(guild_id))
        except Exception:
            log.exception("Failed to load administrators for guild %s", guild_id)
            return []
        log.info("Using %d administrator(s) as approvers for guild %s", len(pool), guild_id)
        return pool

    async def request(self, actor, tokens, reason=None):
        """Ask an approver about tokens on behalf of actor, return a Decision."""
        if actor is None or not actor.guild_id:
            log.info("No guild to find an approver in")
            return Decision.no_admin

        request = ApprovalRequest(actor, list(tokens), reason)
        pool = await self.approvers(actor.guild_id)
        if not pool:
            log.warning("No approvers available in guild %s", actor.guild_id)
            return Decision.no_admin

        approver = self.rng.choice(pool)
        log.info("Asking %s to approve %s for user %s",
                 approver_id(approver), request.describe_tokens(), actor.user_id)

        try:
            prompt = await self.transport.present(request, approver)
        except Exception:
            log.warning("Could not present approval request to %s", approver_id(approver), exc_info=True)
            return Decision.no_admin

        decision = Decision.timeout
        try:
            decision = parse_decision(
                await asyncio.wait_for(self.transport.collect(prompt), self.timeout))
        except asyncio.TimeoutError:
            log.info("Approval request for user %s timed out after %ss", actor.user_id, self.timeout)
        except Exception:
            log.warning("Failed waiting for approval from %s", approver_id(approver), exc_info=True)
        finally:
            try:
                await self.transport.close(prompt, decision)
            except Exception:
                log.warning("Failed to clean up approval prompt", exc_info=True)

        if decision is Decision.approve_forever:
            await self._persist(request, approver)

        log.info("Approval request for user %s: %s", actor.user_id, decision)
        return decision

    async def _persist(self, request, approver):
        if self.grants is None:
            log.warning("Forever approval given but no grant store configured")
            return
        try:
            await self.grants.grant_forever(
                request.actor.guild_id, request.actor.user_id, request.token,
                granted_by=approver_id(approver))
        except Exception:
            log.exception("Failed to persist forever grant %s for user %s",
                          format_token(request.token), request.actor.user_id)

    def for_actor(self, actor):
        """request_approval callback for resolve(), bound to actor."""
        async def request_approval(payload):
            return await self.request(actor, payload.tokens, payload.reason)
        return request_approval
