#!/usr/bin/env python3
"""
QuickBase Codepage CLI
Deploy, validate and manage codepages from the command line, JSON on stdout

Usage:
    python -m qb_codepage validate page.html
    python -m qb_codepage deploy page.html --name "Pricing Calculator" --version 1.0.0 --tags pricing,sales
    python -m qb_codepage search pricing
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from qbcore.codepages.manager import CodepageManager, CodepageValidationError
from qbcore.codepages.validator import validate_codepage
from qbcore.config import QuickBaseConfig
from qbcore.quickbase.client import QuickBaseClient
from qbcore.quickbase.errors import QuickBaseError

logger = logging.getLogger("qb_codepage")


def _split(value: Optional[str]):
    return [v.strip() for v in value.split(",") if v.strip()] if value else None


def _progress(message: str):
    print(message, file=sys.stderr)


def cmd_validate(args) -> Dict[str, Any]:
    code = Path(args.file).read_text()
    result = validate_codepage(code)
    return {"file": args.file, **result.to_dict(), "success": result.is_valid}


async def run_command(args, manager: CodepageManager) -> Dict[str, Any]:
    """Run a command that talks to QuickBase"""
    if args.command == "deploy":
        code = Path(args.file).read_text()
        name = args.name or Path(args.file).stem
        _progress(f"Deploying {name}...")
        record_id = await manager.deploy_codepage(
            name=name,
            code=code,
            description=args.description or "",
            version=args.version,
            tags=_split(args.tags),
            dependencies=_split(args.deps),
            target_table_id=args.target_table,
            validate=not args.no_validate,
        )
        return {"recordId": record_id, "name": name, "version": args.version or "N/A"}

    elif args.command == "search":
        codepages = await manager.search_codepages(
            search_term=args.term,
            tags=_split(args.tags),
            target_table_id=args.target_table,
            active_only=not args.all,
        )
        return {"count": len(codepages), "codepages": [
            {k: v for k, v in c.to_dict().items() if k != "code"} for c in codepages
        ]}

    elif args.command == "get":
        codepage = await manager.get_codepage(args.record_id)
        if codepage is None:
            return {"error": f"Codepage {args.record_id} not found"}
        data = codepage.to_dict()
        if not args.code:
            data.pop("code")
        return data

    elif args.command == "update":
        code = Path(args.file).read_text() if args.file else None
        if code is not None and args.snapshot:
            current = await manager.get_codepage(args.record_id)
            if current is None:
                return {"error": f"Codepage {args.record_id} not found"}
            version_id = await manager.save_codepage_version(
                args.record_id, current.version or "unversioned", current.code, "Snapshot before update"
            )
            _progress(f"Saved snapshot {version_id} of version {current.version or 'unversioned'}")
        await manager.update_codepage(
            args.record_id,
            code=code,
            description=args.description,
            version=args.version,
            active=args.active,
        )
        return {"updated": True, "recordId": args.record_id}

    elif args.command == "versions":
        versions = await manager.get_codepage_versions(args.record_id, args.limit)
        return {"count": len(versions), "versions": [
            {k: v for k, v in ver.to_dict().items() if k != "code"} for ver in versions
        ]}

    elif args.command == "rollback":
        version = await manager.rollback_codepage(args.record_id, args.version_id)
        return {"rolledBack": True, "recordId": args.record_id, "version": version.version}

    elif args.command == "export":
        content = await manager.export_codepage(args.record_id, args.format)
        if args.output:
            Path(args.output).write_text(content)
            _progress(f"Exported to: {args.output}")
            return {"recordId": args.record_id, "format": args.format, "output": args.output}
        return {"recordId": args.record_id, "format": args.format, "content": content}

    raise ValueError(f"Unknown command: {args.command}")


async def run_remote(args) -> Dict[str, Any]:
    config = QuickBaseConfig.from_env(args.env_file)
    async with QuickBaseClient(config) as client:
        manager = CodepageManager(client, table_id=args.table, version_table_id=args.version_table)
        return await run_command(args, manager)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="QuickBase Codepage CLI - deploy, validate and manage codepages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s validate page.html
  %(prog)s deploy page.html --name "Pricing Calculator" --version 1.0.0
  %(prog)s search pricing --tags sales
  %(prog)s update 42 --file page.html --version 1.1.0
  %(prog)s versions 42
  %(prog)s rollback 42 7
  %(prog)s export 42 --format markdown --output page.md

Environment:
  QB_REALM, QB_USER_TOKEN, QB_APP_ID, CODEPAGE_TABLE_ID, CODEPAGE_VERSION_TABLE_ID
        """
    )
    parser.add_argument("--env-file", help="Path to .env file")
    parser.add_argument("--table", help="Codepage table ID (default: CODEPAGE_TABLE_ID)")
    parser.add_argument("--version-table", help="Version table ID (default: CODEPAGE_VERSION_TABLE_ID)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("deploy", help="Validate and deploy a codepage file")
    p.add_argument("file")
    p.add_argument("--name", "-n", help="Codepage name (default: file name)")
    p.add_argument("--description", "-d")
    p.add_argument("--version")
    p.add_argument("--tags", help="Comma-separated tags")
    p.add_argument("--deps", help="Comma-separated dependencies")
    p.add_argument("--target-table", help="Target table ID")
    p.add_argument("--no-validate", action="store_true", help="Skip validation")

    p = sub.add_parser("validate", help="Validate a codepage file locally")
    p.add_argument("file")

    p = sub.add_parser("search", help="Search codepages")
    p.add_argument("term", nargs="?")
    p.add_argument("--tags", help="Comma-separated tags")
    p.add_argument("--target-table", help="Target table ID")
    p.add_argument("--all", action="store_true", help="Include inactive codepages")

    p = sub.add_parser("get", help="Show a codepage")
    p.add_argument("record_id", type=int)
    p.add_argument("--code", action="store_true", help="Include code")

    p = sub.add_parser("update", help="Update a codepage")
    p.add_argument("record_id", type=int)
    p.add_argument("--file", "-f", help="New code file")
    p.add_argument("--description", "-d")
    p.add_argument("--version")
    p.add_argument("--snapshot", action="store_true", help="Save the current code as a version first")
    active = p.add_mutually_exclusive_group()
    active.add_argument("--activate", dest="active", action="store_const", const=True)
    active.add_argument("--deactivate", dest="active", action="store_const", const=False)

    p = sub.add_parser("versions", help="List saved versions")
    p.add_argument("record_id", type=int)
    p.add_argument("--limit", type=int)

    p = sub.add_parser("rollback", help="Restore a saved version")
    p.add_argument("record_id", type=int)
    p.add_argument("version_id", type=int)

    p = sub.add_parser("export", help="Export a codepage")
    p.add_argument("record_id", type=int)
    p.add_argument("--format", choices=["html", "json", "markdown"], default="html")
    p.add_argument("--output", "-o", help="Output file path")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        if args.command == "validate":
            results = cmd_validate(args)
        else:
            results = asyncio.run(run_remote(args))
    except CodepageValidationError as e:
        results = {"error": str(e), **e.result.to_dict()}
    except (QuickBaseError, ValueError, OSError) as e:
        results = {"error": str(e)}

    print(json.dumps(results, indent=2, default=str))

    if "error" in results or results.get("success") is False:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
