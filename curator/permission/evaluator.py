"""Decide what a set of candidate tokens means for an actor.

    START -> admin? -> forever grant? -> no declarations? -> scan candidates
          -> ALLOWED | FORBIDDEN | ONCE_PENDING | DENY_UNDEFINED

Candidates must be ordered most specific first (see template.collect_tokens),
the first decisive state wins.
"""
from dataclasses import dataclass, field
from enum import Enum
import logging
import typing

from .rules import PermissionState, RuleTable
from .tokens import format_token, normalize_token

log = logging.getLogger(__name__)


ADMIN_REASON = "Admin privileges granted"
FOREVER_REASON = "Forever grant"
NO_DECLARATIONS_REASON = "No explicit permissions configured"
ONCE_REASON = "Requires one-time approval"
FORBIDDEN_REASON = "Explicitly forbidden"
UNDEFINED_REASON = "Token(s) not defined"


@dataclass(frozen=True)
class ActorRef:
    """Who is asking. is_admin bypasses every check."""
    guild_id: typing.Optional[str]
    user_id: typing.Optional[str]
    is_admin: bool = False


class Outcome(Enum):
    ALLOWED = "allowed"
    FORBIDDEN = "forbidden"
    ONCE_PENDING = "once_pending"
    DENY_UNDEFINED = "deny_undefined"


@dataclass
class Verdict:
    outcome: Outcome
    reason: typing.Optional[str] = None
    missing: typing.List[str] = field(default_factory=list)

    @property
    def allowed(self):
        return self.outcome is Outcome.ALLOWED

    @property
    def requires_approval(self):
        """Whether a human may still approve this."""
        return self.outcome in (Outcome.ONCE_PENDING, Outcome.DENY_UNDEFINED)


_STATE_VERDICTS = {
    PermissionState.allowed: (Outcome.ALLOWED, None),
    PermissionState.once: (Outcome.ONCE_PENDING, ONCE_REASON),
    PermissionState.forbidden: (Outcome.FORBIDDEN, FORBIDDEN_REASON),
}


async def evaluate(declarations, actor, tokens, grants=None):
    """Evaluate candidate tokens against declarations and stored grants.

    Arguments:
      declarations: mapping of token string -> state, may be empty or None
      actor: ActorRef or None (anonymous, never admin, no grants)
      tokens: candidate tokens, most specific first
      grants: GrantStore consulted for forever grants, optional
    """
    if actor is not None and actor.is_admin:
        log.debug("Admin override for user %s", actor.user_id)
        return Verdict(Outcome.ALLOWED, ADMIN_REASON)

    tokens = [normalize_token(token) for token in tokens]
    tokens = [token for token in tokens if token]

    if grants is not None and actor is not None:
        if await grants.has_forever_grant(actor.guild_id, actor.user_id, tokens):
            log.debug("Forever grant covers user %s for %s", actor.user_id,
                      ", ".join(format_token(t) for t in tokens))
            return Verdict(Outcome.ALLOWED, FOREVER_REASON)

    if not declarations:
        return Verdict(Outcome.DENY_UNDEFINED, NO_DECLARATIONS_REASON)

    table = RuleTable.compile(declarations)
    missing = []

    for token in tokens:
        formatted = format_token(token)
        state = table.state_for(token)
        if state is None:
            missing.append(formatted)
            continue
        outcome, reason = _STATE_VERDICTS[state]
        log.debug("%s resolved to %s", formatted, state)
        if outcome is Outcome.ALLOWED:
            return Verdict(outcome, reason)
        return Verdict(outcome, reason, [formatted])

    return Verdict(Outcome.DENY_UNDEFINED, UNDEFINED_REASON, missing)
