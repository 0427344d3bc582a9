from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from archive_taxonomy.config import Settings, get_settings
from archive_taxonomy.ingestion import build_import_orchestrator, open_repository
from archive_taxonomy.logging_setup import configure_logging
from archive_taxonomy.models import ImportMode

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archive-taxonomy",
        description="Classify and import a department document archive",
    )
    sub = parser.add_subparsers(dest="command")

    imp = sub.add_parser("import", help="Import every file under a department folder")
    imp.add_argument("--target", required=True, help="Department root folder")
    imp.add_argument(
        "--mode",
        default=ImportMode.FAST.value,
        choices=[m.value for m in ImportMode],
        help="'full' also asks the AI classifier",
    )

    sub.add_parser("clean", help="Delete documents, metadata, topics and file assets")
    return parser


async def run_import(settings: Settings, target: str, mode: ImportMode) -> None:
    repo = await open_repository(settings)
    orchestrator = await build_import_orchestrator(repo, settings)
    try:
        stats = await orchestrator.import_directory(target, mode)
        print(stats.report())
    finally:
        await orchestrator.close()


async def run_clean(settings: Settings) -> None:
    repo = await open_repository(settings)
    try:
        counts = await repo.clean()
    finally:
        await repo.close()
    for table, count in counts.items():
        print(f"{table}: {count} deleted")


def main(argv: Optional[list[str]] = None) -> int:
    """Always returns 0; per-file failures only show up in the report."""
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        if args.command == "import":
            asyncio.run(run_import(settings, args.target, ImportMode(args.mode)))
        elif args.command == "clean":
            asyncio.run(run_clean(settings))
    except Exception as e:
        logger.error("Command %r failed: %s", args.command, e)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
