# pyright: standard

"""dionysius: dionysius/__main__.py.

Plan and run backups of a directory tree holding git repositories and
plain directories archived with borg or mirrored with rsync.
"""

import sys

from .cli.dispatcher import main as cli_main


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``dionysius`` console script."""
    return cli_main(argv)


if __name__ == "__main__":
    sys.exit(main())
