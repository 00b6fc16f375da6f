"""Administrative commands for an autotest instance.

``dump`` prints every stored record as JSON; ``clear`` deletes them and is
refused unless ``AUTOTEST_INSTANCE`` names the test instance.
``check-catalogue`` validates a course catalogue file without starting
anything.

Usage
-----
::

    python -m autotest.cli dump
    AUTOTEST_INSTANCE=test python -m autotest.cli clear
    python -m autotest.cli check-catalogue courses.yaml

"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import msgspec

from autotest.config import AutotestConfig
from autotest.courses import load_catalogue
from autotest.errors import AutotestError
from autotest.store import create_result_store


async def _dump(config: AutotestConfig) -> bytes:
    store = await create_result_store(config)
    try:
        snapshot = await store.get_all_data()
    finally:
        await store.aclose()
    return msgspec.json.format(msgspec.json.encode(snapshot), indent=2)


async def _clear(config: AutotestConfig) -> None:
    store = await create_result_store(config)
    try:
        await store.clear_data()
    finally:
        await store.aclose()


def main(argv: list[str] | None = None) -> int:
    """Run an administrative command against the configured store.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 1 when configuration or the store fails.

    """
    parser = argparse.ArgumentParser(description=__doc__)
    subcommands = parser.add_subparsers(dest="command", required=True)
    subcommands.add_parser("dump", help="Print every stored record as JSON")
    subcommands.add_parser("clear", help="Delete every record (test instance only)")
    check = subcommands.add_parser(
        "check-catalogue", help="Validate a course catalogue file"
    )
    check.add_argument("catalogue", type=Path, help="YAML catalogue to validate")
    args = parser.parse_args(argv)

    try:
        if args.command == "check-catalogue":
            catalogue = load_catalogue(args.catalogue)
            print(f"catalogue OK: {len(catalogue.courses)} course(s)")
            return 0
        config = AutotestConfig.from_env()
        if args.command == "dump":
            sys.stdout.write(asyncio.run(_dump(config)).decode() + "\n")
        else:
            asyncio.run(_clear(config))
            print(f"cleared all records for instance {config.instance}")
    except AutotestError as exc:
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
