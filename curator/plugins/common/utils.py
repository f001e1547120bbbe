class AsyncContextWrapper:
    """Turns `async with await coro` into `async with`."""

    def __init__(self, coro):
        self.coro = coro

    async def __aenter__(self):
        self.wrapped = await self.coro
        return await self.wrapped.__aenter__()

    async def __aexit__(self, *args, **kwargs):
        return await self.wrapped.__aexit__(*args, **kwargs)


class TypeMap:
    """Dict that looks up based on a class's bases.

    In the case of conflict, will return the first matching base.
    """

    def __init__(self, dct=None):
        self._dict = dct or {}

    def put(self, cls, obj):
        self._dict[cls] = obj

    def lookup(self, cls):
        for base in cls.__mro__:
            try:
                return self._dict[base]
            except KeyError:
                pass
        return None


def clean_mentions(line):
    """Escape anything that could resolve to mention."""
    return line.replace("@", "@\u200b")


def clean_triple_backtick(line):
    """Break up runs of backticks so line can sit inside a ``` block."""
    if not line:
        return line
    line = line.replace("```", "``\u200b`")
    if line[-1] == '`':
        line += '\n'
    return line


def code_block(text):
    return "```\n{}```".format(clean_triple_backtick(clean_mentions(text)))
