#!/usr/bin/env python3
"""
attachstore command line

Maintenance commands against one configured storage.

Usage:
    python -m attachstore url avatars/1.jpg --expires-in 300
    python -m attachstore presign uploads/new.bin --method put
    python -m attachstore delete-prefixed records/42/
    python -m attachstore clear --older-than 86400
    python -m attachstore exists avatars/1.jpg

    # Storage settings come from the environment
    ATTACHSTORE_BUCKET=photos ATTACHSTORE_PREFIX=cache python -m attachstore clear --older-than 3600
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from attachstore.core.errors import AttachStoreError, BulkDeletePartialFailure
from attachstore.observability.logging import LogLevel, setup_logging
from attachstore.storage import S3Storage, StorageConfig, create_storage
from attachstore.storage.protocols import ObjectSummary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="attachstore", description="S3 attachment storage maintenance")
    parser.add_argument("--env-prefix", default="ATTACHSTORE", help="environment variable prefix")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=[level.name for level in LogLevel],
    )
    parser.add_argument("--json-logs", action="store_true", help="log as JSON lines")

    commands = parser.add_subparsers(dest="command", required=True)

    url = commands.add_parser("url", help="print a download URL")
    url.add_argument("key")
    url.add_argument("--expires-in", type=int)
    url.add_argument("--host", help="CDN host ending with '/'")
    url.add_argument("--force-signed", action="store_true")

    presign = commands.add_parser("presign", help="print direct-upload parameters as JSON")
    presign.add_argument("key")
    presign.add_argument("--method", default="post", choices=["put", "post"])
    presign.add_argument("--expires-in", type=int)
    presign.add_argument("--content-type")

    delete_prefixed = commands.add_parser("delete-prefixed", help="delete every object under a prefix")
    delete_prefixed.add_argument("prefix")

    clear = commands.add_parser("clear", help="delete objects older than a given age")
    clear.add_argument("--older-than", type=int, required=True, metavar="SECONDS")

    exists = commands.add_parser("exists", help="exit 0 if the object exists, 1 otherwise")
    exists.add_argument("key")

    return parser


async def run_command(args: argparse.Namespace, storage: S3Storage) -> int:
    """Execute one parsed command against `storage`; returns the exit code."""
    if args.command == "url":
        options = {"expires_in": args.expires_in, "host": args.host}
        if args.force_signed:
            options["force_signed"] = True
        print(await storage.url(args.key, **{k: v for k, v in options.items() if v is not None}))
        return 0

    if args.command == "presign":
        options = {"expires_in": args.expires_in, "content_type": args.content_type}
        result = await storage.presign(
            args.key, method=args.method, **{k: v for k, v in options.items() if v is not None}
        )
        print(json.dumps({
            "method": result.method,
            "url": result.url,
            "fields": dict(result.fields),
            "headers": dict(result.headers),
        }, indent=2))
        return 0

    if args.command == "delete-prefixed":
        report = await storage.delete_prefixed(args.prefix)
        print(f"Deleted {report.deleted_count} object(s) under {report.prefix or '(bucket root)'}")
        return 0

    if args.command == "clear":
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=args.older_than)

        def expired(obj: ObjectSummary) -> bool:
            return obj.last_modified is not None and obj.last_modified < cutoff

        report = await storage.clear(expired)
        print(f"Deleted {report.deleted_count} of {report.scanned} object(s) older than {cutoff.isoformat()}")
        return 0

    if args.command == "exists":
        found = await storage.exists(args.key)
        print("yes" if found else "no")
        return 0 if found else 1

    raise ValueError(f"unknown command {args.command!r}")


async def _main(args: argparse.Namespace) -> int:
    config = StorageConfig.from_env(args.env_prefix)
    async with create_storage(config) as storage:
        return await run_command(args, storage)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(LogLevel[args.log_level], json_output=args.json_logs)

    try:
        return asyncio.run(_main(args))
    except BulkDeletePartialFailure as e:
        print(f"Error: {e}", file=sys.stderr)
        for failure in e.failures:
            print(f"  {failure.key}: {failure.code} {failure.message}", file=sys.stderr)
        return 2
    except AttachStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
