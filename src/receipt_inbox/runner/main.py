"""
CLI main entry point.
"""

import argparse
import logging
import mimetypes
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..errors import InvalidTransitionError, PersistenceError, RecordNotFoundError
from ..state_store import StateStore
from ..transport import HttpUploadTransport, TransferJournal
from ..uploads import UploadManager, UploadStatus

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="receipt-inbox",
        description="Capture receipts locally and upload them durably",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    capture_parser = subparsers.add_parser("capture", help="Store a scanned receipt for upload")
    capture_parser.add_argument("file", type=Path, help="Image file to capture")
    capture_parser.add_argument(
        "--content-type",
        type=str,
        default=None,
        help="MIME type (default: guessed from file name, else image/jpeg)",
    )

    upload_parser = subparsers.add_parser(
        "upload", help="Recover interrupted transfers and upload pending receipts"
    )
    upload_parser.add_argument(
        "--wait",
        type=float,
        default=60.0,
        help="Seconds to wait for transfers to finish (default: 60)",
    )

    subparsers.add_parser("status", help="Show upload status counts")

    list_parser = subparsers.add_parser("list", help="List receipts")
    list_parser.add_argument(
        "--status",
        type=str,
        choices=[s.value for s in UploadStatus],
        default=None,
        help="Only receipts in this status",
    )
    list_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum receipts to show (default: 50)",
    )

    retry_parser = subparsers.add_parser("retry", help="Re-arm a failed receipt")
    retry_parser.add_argument("record_id", type=str, help="Receipt ID")

    delete_parser = subparsers.add_parser("delete", help="Delete a receipt")
    delete_parser.add_argument("record_id", type=str, help="Receipt ID")

    return parser


def build_manager(config: Config) -> UploadManager:
    """Wire store, transport and manager from config."""
    store = StateStore(config.state_db_path)
    transport = HttpUploadTransport(
        base_url=config.endpoint.base_url,
        token=config.endpoint.token,
        session_id=config.upload.session_id,
        journal=TransferJournal(config.journal_path),
        timeout=config.endpoint.timeout_seconds,
        max_retries=config.endpoint.max_retries,
        backoff_factor=config.endpoint.backoff_factor,
        max_workers=config.upload.max_workers,
    )
    return UploadManager.from_config(config, store, transport)


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def cmd_capture(config: Config, file: Path, content_type: str | None) -> int:
    """Capture a receipt image. Uploading is left to the upload command."""
    if not file.is_file():
        print(f"❌ File not found: {file}")
        return 1

    content_type = content_type or mimetypes.guess_type(file.name)[0] or "image/jpeg"
    store = StateStore(config.state_db_path)
    record = store.create_record(file.read_bytes(), content_type)

    print(f"✓ Captured {file.name} as receipt {record.id} ({record.status.value})")
    return 0


def cmd_upload(config: Config, wait: float) -> int:
    """Reconcile, dispatch, and wait for transfers to finish."""
    manager = build_manager(config)
    try:
        recovery = manager.restore_pending_tasks()
        if recovery.resolved_count:
            print(
                f"🔁 Recovered {len(recovery.uploaded)} uploaded, "
                f"{len(recovery.failed)} failed, {len(recovery.orphaned)} interrupted"
            )

        result = manager.enqueue_pending_uploads()
        print(f"📤 Submitted {result.submitted_count} receipts")
        for record_id, reason in result.rejected.items():
            print(f"   ⚠️  {record_id}: {reason}")

        finished = manager.run_until_idle(timeout=wait)
    finally:
        manager.close()

    stats = manager.store.get_stats(max_attempts=config.upload.max_attempts)
    print(
        f"   uploaded={stats['uploaded']} failed={stats['failed']} "
        f"pending={stats['pending']} uploading={stats['uploading']}"
    )
    if not finished:
        print("⚠️  Some transfers did not finish in time; run upload again later")
        return 1
    return 0 if stats["failed"] == 0 else 1


def cmd_status(config: Config) -> int:
    """Show upload status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats(max_attempts=config.upload.max_attempts)

    print("\n📊 Upload Status")
    print("=" * 40)
    print(f"  Receipts total:         {stats['total']}")
    print(f"  Pending:                {stats['pending']}")
    print(f"  Uploading:              {stats['uploading']}")
    print(f"  Uploaded:               {stats['uploaded']}")
    print(f"  Failed:                 {stats['failed']}")
    print(f"  Gave up (needs retry):  {stats['exhausted']}")
    print()

    return 0


def cmd_list(config: Config, status: str | None, limit: int) -> int:
    """List receipts, newest first."""
    store = StateStore(config.state_db_path)
    if status:
        records = store.list_by_status(status, limit=limit)
    else:
        records = store.list_records(limit=limit)

    if not records:
        print("No receipts")
        return 0

    for record in records:
        line = (
            f"{record.id}  {record.created_at}  {record.status.value:<9}  "
            f"attempts={record.upload_attempts}"
        )
        if record.last_error:
            line += f"  error={record.last_error}"
        print(line)
    return 0


def cmd_retry(config: Config, record_id: str) -> int:
    """Re-arm a failed receipt so the next upload run submits it."""
    store = StateStore(config.state_db_path)
    try:
        record = store.update_status(record_id, UploadStatus.PENDING)
    except RecordNotFoundError:
        print(f"❌ No receipt {record_id}")
        return 1
    except InvalidTransitionError as e:
        print(f"❌ {e}")
        return 1

    print(f"✓ Receipt {record.id} re-armed ({record.upload_attempts} attempts so far)")
    return 0


def cmd_delete(config: Config, record_id: str) -> int:
    """Delete a receipt."""
    store = StateStore(config.state_db_path)
    if not store.delete_record(record_id):
        print(f"❌ No receipt {record_id}")
        return 1
    print(f"✓ Deleted receipt {record_id}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    try:
        if parsed.command == "capture":
            return cmd_capture(config, parsed.file, parsed.content_type)
        elif parsed.command == "upload":
            return cmd_upload(config, parsed.wait)
        elif parsed.command == "status":
            return cmd_status(config)
        elif parsed.command == "list":
            return cmd_list(config, parsed.status, parsed.limit)
        elif parsed.command == "retry":
            return cmd_retry(config, parsed.record_id)
        elif parsed.command == "delete":
            return cmd_delete(config, parsed.record_id)
        else:
            parser.print_help()
            return 1
    except PersistenceError as e:
        print(f"❌ Database error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
