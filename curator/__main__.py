"""Main bot file."""
import asyncio
import logging
import os
import sys

from .core import CuratorBot


def fix_unicode():
    """Make python not crash when logging trivial statements."""
    if os.name == "nt":
        sys.stdout = sys.__stdout__ = open(
            sys.stdout.detach().fileno(), 'w', encoding=sys.stdout.encoding,
            errors="backslashreplace")
        sys.stderr = sys.__stderr__ = open(
            sys.stderr.detach().fileno(), 'w', encoding=sys.stderr.encoding,
            errors="backslashreplace")


def setup_logging():
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    curator = logging.getLogger("curator")
    curator.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "[%(asctime)s][%(name)s][%(levelname)s] %(message)s")

    stdouthandler = logging.StreamHandler(sys.stdout)
    stdouthandler.setLevel(logging.DEBUG)
    stdouthandler.setFormatter(formatter)
    root.addHandler(stdouthandler)


async def real_main():
    setup_logging()
    bot = CuratorBot()
    async with bot:
        await bot.start()


def main():
    fix_unicode()
    asyncio.run(real_main())


if __name__ == "__main__":
    main()
