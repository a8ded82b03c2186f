"""``berryorm-migrate``: plan or apply migrations for a schema object."""
from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
from typing import List, Optional

from .config import load_settings
from .instance import create_instance
from .schema import Schema, define_schema

logger = logging.getLogger(__name__)


def load_schema(target: str) -> Schema:
    """Import ``module:attribute`` and return it as a Schema.

    A plain mapping of collections is accepted and passed through ``define_schema``.
    """
    module_name, sep, attribute = target.partition(':')
    if not sep or not module_name or not attribute:
        raise ValueError(f"Schema must be given as 'module:attribute', got {target!r}")
    module = importlib.import_module(module_name)
    obj = module
    for part in attribute.split('.'):
        obj = getattr(obj, part)
    if callable(obj) and not isinstance(obj, Schema):
        obj = obj()
    if isinstance(obj, Schema):
        return obj
    return define_schema(obj)


async def _run(command: str, schema: Schema, url: Optional[str]) -> List[str]:
    orm = create_instance(schema, url)
    try:
        if command == 'plan':
            operations = await orm.plan_migrations()
        else:
            operations = (await orm.migrate()).operations
    finally:
        await orm.dispose()
    return [op.describe() for op in operations]


def main(argv: Optional[List[str]] = None) -> int:
    """Run the migration CLI."""
    parser = argparse.ArgumentParser(prog='berryorm-migrate', description="Diff and apply a berryorm schema")
    parser.add_argument('--url', default=None, help="Database URL (default: BERRYORM_DATABASE_URL)")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    subparsers = parser.add_subparsers(dest='command', help="Available commands")
    for name, help_text in (('plan', "Print the operations migrate would apply"), ('migrate', "Apply pending operations")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('schema', help="Schema object as module:attribute")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command not in ('plan', 'migrate'):
        parser.print_help()
        return 2

    settings = load_settings()
    url = args.url or settings.database_url
    try:
        schema = load_schema(args.schema)
        lines = asyncio.run(_run(args.command, schema, url))
    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=args.verbose)
        return 1

    if not lines:
        print("No changes.")
    for line in lines:
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
