"""Declared permission rules.

Declarations come straight from config:

    declarations:
      "object:game:create": allowed
      "object:game:remove": once
      "object:*:remove:*": forbidden

They are compiled into a RuleTable, which answers "what's the most specific
declared state for this token".
"""
from enum import Enum
import logging

from .tokens import format_token, normalize_token

log = logging.getLogger(__name__)


class PermissionState(Enum):
    allowed = "allowed"
    forbidden = "forbidden"
    once = "once"
    undefined = "undefined"

    def __str__(self):
        return self.value


def parse_state(value):
    """PermissionState for value, or None if it doesn't name a declared state."""
    if value is None:
        return None
    if isinstance(value, PermissionState):
        state = value
    else:
        try:
            state = PermissionState(str(value).strip().lower())
        except ValueError:
            return None
    if state is PermissionState.undefined:
        return None
    return state


class Rule:
    __slots__ = ("token", "state", "order")

    def __init__(self, token, state, order):
        self.token = token
        self.state = state
        self.order = order

    @property
    def specificity(self):
        return len(self.token)

    def matches(self, token):
        """A rule matches any token it is a (wildcard aware) prefix of.

        Wildcards in the rule match any segment. A wildcard in the token only
        matches a wildcard in the rule.
        """
        if len(self.token) > len(token):
            return False
        for mine, theirs in zip(self.token, token):
            if mine.is_wildcard:
                continue
            if mine != theirs:
                return False
        return True

    def __repr__(self):
        return "<Rule %s=%s>" % (format_token(self.token), self.state)


class RuleTable:
    """Rules in declaration order.

    The most specific matching rule wins. When several rules of the same
    specificity match, the one declared last wins.
    """

    def __init__(self, rules=None):
        self.rules = list(rules or [])

    @classmethod
    def compile(cls, declarations):
        rules = []
        for raw_token, raw_state in (declarations or {}).items():
            state = parse_state(raw_state)
            if state is None:
                if raw_state not in (None, PermissionState.undefined, "undefined"):
                    log.warning("Ignoring permission %r with unknown state %r", raw_token, raw_state)
                continue
            if not isinstance(raw_token, (str, tuple)):
                raw_token = str(raw_token)
            token = normalize_token(raw_token)
            if not token:
                continue
            rules.append(Rule(token, state, len(rules)))
        return cls(rules)

    def match(self, token):
        """Return the winning Rule for token, or None."""
        best = None
        for rule in self.rules:
            if not rule.matches(token):
                continue
            if best is None or rule.specificity >= best.specificity:
                best = rule
        return best

    def state_for(self, token):
        rule = self.match(token)
        return rule.state if rule else None

    def __len__(self):
        return len(self.rules)
