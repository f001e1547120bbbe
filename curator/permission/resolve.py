"""The one entry point callers use to check a permission.

    result = await resolve(
        ["object:game:create:{serverId}"],
        context={"serverId": guild.id},
        actor=lambda: lookup_member(guild, user),
        declarations=config_declarations,
        request_approval=workflow.for_actor(actor),
        grants=store)
    if not result.success:
        ...

resolve() never raises; any failure comes back as success=False with a
reason.
"""
from dataclasses import dataclass, field
import inspect
import logging
import typing

from .approval import Decision, parse_decision
from .evaluator import ActorRef, evaluate
from .template import collect_tokens
from .tokens import Token, format_token

log = logging.getLogger(__name__)

DEFAULT_DENY_REASON = "Permission denied"


@dataclass
class ApprovalPayload:
    tokens: typing.List[Token]
    reason: typing.Optional[str] = None


@dataclass
class ResolveResult:
    success: bool
    tokens: typing.List[Token] = field(default_factory=list)
    reason: typing.Optional[str] = None
    decision: typing.Optional[Decision] = None
    requires_approval: bool = False

    def describe_tokens(self):
        return ", ".join(format_token(token) for token in self.tokens)


async def lookup_actor(actor):
    """Resolve an ActorRef, None, or a (possibly async) callable returning one.

    A failing lookup is logged and treated as an anonymous actor.
    """
    if actor is None or isinstance(actor, ActorRef) or not callable(actor):
        return actor
    try:
        result = actor()
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception:
        log.warning("Actor lookup failed, evaluating as anonymous", exc_info=True)
        return None


async def _resolve(templates, context, actor, declarations, skip_approval, request_approval, grants):
    tokens = collect_tokens(templates, context)
    if not tokens:
        return ResolveResult(True, tokens)

    actor = await lookup_actor(actor)
    verdict = await evaluate(declarations, actor, tokens, grants)

    if verdict.allowed:
        log.debug("Allowed %s: %s", format_token(tokens[0]), verdict.reason)
        return ResolveResult(True, tokens, verdict.reason)

    reason = verdict.reason or DEFAULT_DENY_REASON
    if not verdict.requires_approval or skip_approval or request_approval is None:
        log.debug("Denied %s without approval: %s", format_token(tokens[0]), reason)
        return ResolveResult(False, tokens, reason, requires_approval=verdict.requires_approval)

    decision = await request_approval(ApprovalPayload(tokens, verdict.reason))
    if decision is not None:
        decision = parse_decision(decision)

    if decision is not None and decision.approved:
        log.debug("Approved %s: %s", format_token(tokens[0]), decision)
        return ResolveResult(True, tokens, decision=decision)

    return ResolveResult(False, tokens, reason, decision, requires_approval=True)


async def resolve(templates, *, context=None, actor=None, declarations=None,
                  skip_approval=False, request_approval=None, grants=None):
    """Resolve templates into tokens, evaluate them, and ask for approval if needed.

    Arguments:
      templates: list of template strings or segment lists
      context: values for {placeholders}, with an optional "options" mapping
      actor: ActorRef, None, or a callable (sync or async) returning one
      declarations: mapping of token -> allowed/forbidden/once
      skip_approval: never ask a human, just report whether one could approve
      request_approval: async callable taking an ApprovalPayload, returning a Decision
      grants: GrantStore for forever grants
    """
    try:
        return await _resolve(
            templates, context, actor, declarations, skip_approval, request_approval, grants)
    except Exception as e:
        log.exception("Permission resolution failed for %r", templates)
        return ResolveResult(False, [], "Permission resolution error: %s" % e)


async def resolve_for_user_action(templates, actor_id, target_id, **options):
    """Acting on your own user never needs permission."""
    if target_id is None or str(target_id) == str(actor_id):
        return ResolveResult(True, collect_tokens(templates, options.get("context")))
    return await resolve(templates, **options)


async def resolve_for_organization_action(templates, organization_uid, member_organizations, **options):
    """Members of an organization may act on it without permission.

    member_organizations is an async callable returning the uids of the
    organizations the actor belongs to.
    """
    if not organization_uid:
        return await resolve(templates, **options)
    try:
        organizations = await member_organizations()
    except Exception:
        log.exception("Organization lookup failed for %s", organization_uid)
        return await resolve(templates, **options)
    if organization_uid in organizations:
        return ResolveResult(True, collect_tokens(templates, options.get("context")))
    return await resolve(templates, **options)
