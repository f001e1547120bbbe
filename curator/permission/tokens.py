"""Permission tokens.

A token is an ordered sequence of segments, e.g. ``object:game:create:42``.
Segments are a small tagged union so that the string ``"5"``, the number
``5``, the boolean ``true`` and the wildcard ``*`` never compare equal to one
another. (Plain python values would not do: ``True == 1``.)

    >>> format_token(normalize_token("object:game:*:42"))
    'object:game:*:42'
    >>> token_key(normalize_token("cmd:5:true"))
    's:cmd|n:5|b:1'
"""
import collections
import re

WILDCARD_KIND = "*"
STR_KIND = "str"
NUM_KIND = "num"
BOOL_KIND = "bool"

EMPTY = "EMPTY"

# Number.MAX_SAFE_INTEGER, so tokens stored by other services keep their types.
MAX_SAFE_INTEGER = 2 ** 53 - 1

NUMERIC_SEGMENT = re.compile(r"^-?(?:0|[1-9]\d*)$")


class Segment(collections.namedtuple("Segment", "kind value")):
    __slots__ = ()

    @property
    def is_wildcard(self):
        return self.kind == WILDCARD_KIND

    def __str__(self):
        if self.kind == WILDCARD_KIND:
            return "*"
        if self.kind == BOOL_KIND:
            return "true" if self.value else "false"
        return str(self.value)


WILDCARD = Segment(WILDCARD_KIND, None)


class Token(tuple):
    """Immutable sequence of segments. Specificity is the segment count."""
    __slots__ = ()

    def __new__(cls, segments=()):
        return super().__new__(cls, segments)

    @property
    def specificity(self):
        return len(self)

    def prefixes(self):
        """Yield this token, then each shorter left-anchored prefix."""
        for length in range(len(self), 0, -1):
            yield Token(self[:length])

    def startswith(self, other):
        """True if other equals this token, or is a prefix of it."""
        return len(other) <= len(self) and tuple(self[:len(other)]) == tuple(other)

    def __str__(self):
        return format_token(self)

    def __repr__(self):
        return "<Token %s>" % format_token(self)


def normalize_segment(raw):
    """Turn a raw segment into a Segment. Never raises."""
    if isinstance(raw, Segment):
        return raw
    if raw is None:
        return WILDCARD
    if isinstance(raw, bool):
        return Segment(BOOL_KIND, raw)
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if isinstance(raw, int):
        # snowflakes are too large to be numbers, same as their string form
        if abs(raw) > MAX_SAFE_INTEGER:
            return Segment(STR_KIND, str(raw))
        return Segment(NUM_KIND, raw)
    if isinstance(raw, float):
        return Segment(STR_KIND, repr(raw))

    value = str(raw).strip()
    if not value or value == "*":
        return WILDCARD

    lower = value.lower()
    if lower == "true":
        return Segment(BOOL_KIND, True)
    if lower == "false":
        return Segment(BOOL_KIND, False)

    if NUMERIC_SEGMENT.match(value):
        num = int(value)
        if abs(num) <= MAX_SAFE_INTEGER:
            return Segment(NUM_KIND, num)

    return Segment(STR_KIND, value)


def normalize_token(raw):
    """Build a Token from a colon string or a sequence of raw segments.

    Sequences are normalized positionally; nothing is dropped, an empty
    element simply becomes a wildcard at that position.
    """
    if isinstance(raw, str):
        trimmed = raw.strip()
        if not trimmed:
            return Token()
        return Token(normalize_segment(part) for part in trimmed.split(":"))
    if isinstance(raw, (list, tuple)):
        return Token(normalize_segment(part) for part in raw)
    return Token()


def format_token(token):
    """Human readable form, ``EMPTY`` for the empty token."""
    if not token:
        return EMPTY
    return ":".join(str(segment) for segment in token)


def _segment_key(segment):
    if segment.is_wildcard:
        return "u:"
    if segment.kind == NUM_KIND:
        return "n:%s" % segment.value
    if segment.kind == BOOL_KIND:
        return "b:%d" % segment.value
    return "s:%s" % segment.value


def token_key(token):
    """Type-prefixed serialization, safe to use as a dict or set key."""
    return "|".join(_segment_key(segment) for segment in token)
