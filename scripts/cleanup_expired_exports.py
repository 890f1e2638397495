#!/usr/bin/env python3
"""
Find and remove expired USFM export archives.

Workers sweep expired archives on a timer; this script does the same on
demand, for instance when no worker has been running for a while.

Usage:
    python scripts/cleanup_expired_exports.py          # List expired exports (dry run)
    python scripts/cleanup_expired_exports.py --delete # Actually delete them
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from backend.app.config import get_settings
from backend.app.services.artifact_store import ArtifactStore, format_bytes

console = Console()


def build_store(export_dir: Path | None) -> ArtifactStore:
    load_dotenv()
    settings = get_settings()
    return ArtifactStore(export_dir or settings.export_directory, settings.export_ttl_seconds)


def main() -> int:
    parser = argparse.ArgumentParser(description="Find and optionally delete expired export archives")
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Actually delete expired archives (default is dry run)",
    )
    parser.add_argument("--export-dir", type=Path, help="Override export directory path")
    args = parser.parse_args()

    store = build_store(args.export_dir)
    console.print(f"Export directory: {store.directory}")
    console.print(f"Mode: {'[red]DELETE[/red]' if args.delete else '[yellow]DRY RUN[/yellow]'}\n")

    records = store.list_artifacts()
    expired = [record for record in records if store.is_expired(record)]
    console.print(f"Found {len(records)} export(s), {len(expired)} expired")

    if not expired:
        console.print("[green]No expired exports found.[/green]")
        return 0

    table = Table(title="Expired exports")
    table.add_column("Filename")
    table.add_column("Size", justify="right")
    table.add_column("Created")
    table.add_column("Expired")
    for record in expired:
        table.add_row(
            record.filename,
            format_bytes(record.size_bytes),
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.expires_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)

    total_size = sum(record.size_bytes for record in expired)
    if not args.delete:
        console.print(f"\nRun with --delete to remove these exports ({format_bytes(total_size)}).")
        return 0

    deleted_count = 0
    deleted_size = 0
    for record in expired:
        try:
            if store.delete(record.filename):
                deleted_count += 1
                deleted_size += record.size_bytes
        except OSError as e:
            console.print(f"  [red]ERROR deleting {record.filename}: {e}[/red]")

    console.print(f"\nDeleted {deleted_count} export(s), freed {format_bytes(deleted_size)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
