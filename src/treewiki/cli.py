"""Operator commands for a TreeWiki document store."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from treewiki.config import Settings
from treewiki.core.cache import DocumentCache
from treewiki.core.errors import WikiError
from treewiki.core.models import WikiDocument
from treewiki.core.storage import open_store
from treewiki.core.tree import TreeEngine, check_consistency


def _engine(settings: Settings) -> TreeEngine:
    store = open_store(
        settings.store_url, seed_file=settings.seed_file, timeout=settings.fetch_timeout
    )
    return TreeEngine(DocumentCache(store, timeout=settings.fetch_timeout))


async def cmd_check(engine: TreeEngine, args: argparse.Namespace) -> int:
    document = await engine.fetch_document()
    print(f"Menus: {len(document.menus)}")
    print(f"Pages: {len(document.pages)}")
    problems = check_consistency(document)
    for problem in problems:
        print(f"  - {problem}")
    if problems:
        print(f"{len(problems)} problem(s) found")
        return 1
    print("Document is consistent")
    return 0


async def cmd_export(engine: TreeEngine, args: argparse.Namespace) -> int:
    document = await engine.fetch_document()
    args.file.write_text(
        json.dumps(document.to_payload(), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    print(f"Exported {len(document.menus)} menus, {len(document.pages)} pages to {args.file}")
    return 0


async def cmd_import(engine: TreeEngine, args: argparse.Namespace) -> int:
    try:
        payload = json.loads(args.file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Cannot read {args.file}: {exc}", file=sys.stderr)
        return 1
    document = WikiDocument.from_payload(payload)
    await engine.replace_document(document)
    print(f"Imported {len(document.menus)} menus, {len(document.pages)} pages")
    return 0


async def cmd_prune(engine: TreeEngine, args: argparse.Namespace) -> int:
    removed = await engine.prune_orphans()
    print(f"Removed {removed} orphan menu entries")
    return 0


COMMANDS = {
    "check": cmd_check,
    "export": cmd_export,
    "import": cmd_import,
    "prune": cmd_prune,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="treewiki", description=__doc__)
    parser.add_argument("--store", help="store location (overrides TREEWIKI_STORE_URL)")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("check", help="print counts and consistency problems")
    export = sub.add_parser("export", help="write the document to a JSON file")
    export.add_argument("file", type=Path)
    import_ = sub.add_parser("import", help="replace the document from a JSON file")
    import_.add_argument("file", type=Path)
    sub.add_parser("prune", help="drop menu entries pointing at missing pages")
    serve = sub.add_parser("serve", help="run the HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.command == "serve":
        import uvicorn

        uvicorn.run("treewiki.main:app", host=args.host, port=args.port)
        return 0

    settings = Settings()
    if args.store:
        settings = settings.model_copy(update={"store_url": args.store})
    try:
        engine = _engine(settings)
        return asyncio.run(COMMANDS[args.command](engine, args))
    except WikiError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
