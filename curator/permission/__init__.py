"""Permission token resolution and approval."""
from .approval import (
    ApprovalRequest, ApprovalTransport, ApprovalTransportError, ApprovalWorkflow,
    ApproverDirectory, Decision, DEFAULT_TIMEOUT)
from .evaluator import ActorRef, Outcome, Verdict, evaluate
from .resolve import (
    ApprovalPayload, ResolveResult, resolve, resolve_for_organization_action,
    resolve_for_user_action)
from .rules import PermissionState, RuleTable
from .store import Grant, GrantStore, MemoryGrantStore, PostgresGrantStore
from .template import collect_tokens, resolve_tokens
from .tokens import (
    EMPTY, WILDCARD, Segment, Token, format_token, normalize_segment,
    normalize_token, token_key)
