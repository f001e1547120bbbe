"""Expand permission templates into candidate tokens.

A template such as ``"object:game:create:{serverId}"`` is filled in from a
context (usually built from the invoking command) and expanded into the
token itself followed by every shorter prefix:

    object:game:create:123
    object:game:create
    object:game
    object

Evaluation relies on this order: most specific first.
"""
import collections.abc
import json
import logging
import re

from .tokens import format_token, normalize_token

log = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{([^}]+)\}")

UNKNOWN = "UNKNOWN"
OBJECT = "OBJECT"


def _lookup(context, name):
    options = context.get("options")
    value = None
    if isinstance(options, collections.abc.Mapping):
        value = options.get(name)
    if value is None:
        value = context.get(name)
    return value


def _stringify(value):
    if value is None:
        return UNKNOWN
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if type(value).__str__ is not object.__str__ and not isinstance(
            value, (collections.abc.Mapping, list, tuple, set)):
        return str(value)
    try:
        return json.dumps(value, default=list)
    except (TypeError, ValueError):
        return OBJECT


def substitute_placeholders(value, context):
    """Replace each ``{name}`` in value.

    ``name`` is looked up in ``context["options"]`` first, then in the context
    itself. Missing values become ``UNKNOWN``.
    """
    context = context or {}
    return PLACEHOLDER.sub(
        lambda match: _stringify(_lookup(context, match.group(1))), value)


def _split_template(template):
    if isinstance(template, (list, tuple)):
        return [template]
    return [part.strip() for part in str(template).split(",") if part.strip()]


def resolve_tokens(template, context=None, seen=None):
    """Expand a single template into tokens, most specific first.

    String templates may hold several comma separated templates. A list is
    always one template, its string elements still get placeholders filled.
    Tokens already in ``seen`` (canonical strings) are skipped, and ``seen`` is
    updated, so callers can dedupe across several templates.
    """
    if seen is None:
        seen = set()
    if not template:
        log.debug("Skipping empty permission template %r", template)
        return []

    context = context or {}
    results = []
    for sub_template in _split_template(template):
        if isinstance(sub_template, str):
            resolved = substitute_placeholders(sub_template, context)
            parts = [part.strip() for part in resolved.split(":") if part.strip()]
        else:
            parts = [
                substitute_placeholders(part, context) if isinstance(part, str) else part
                for part in sub_template
            ]

        token = normalize_token(parts)
        if not token:
            log.debug("Template %r resolved to an empty token", sub_template)
            continue

        for candidate in token.prefixes():
            key = format_token(candidate)
            if key in seen:
                continue
            seen.add(key)
            log.debug("Template %r -> %s", sub_template, key)
            results.append(candidate)
    return results


def collect_tokens(templates, context=None):
    """Expand several templates in order, deduplicating across all of them."""
    if isinstance(templates, str):
        templates = [templates]
    seen = set()
    tokens = []
    for template in templates or ():
        tokens.extend(resolve_tokens(template, context, seen))
    return tokens
