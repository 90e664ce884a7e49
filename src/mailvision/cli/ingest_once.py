"""One-shot catch-up harvest of the Sent folder."""

from __future__ import annotations

import argparse

from mailvision.cli.worker import build_watcher, configure_logging, load_settings
from mailvision.domain.errors import (
    AnalysisServiceError,
    AuthenticationError,
    FolderNotFoundError,
    OperationCancelled,
    PersistenceError,
)
from mailvision.infrastructure.sqlite import SQLiteImageStore


def print_status(store: SQLiteImageStore, email: str, limit: int) -> None:
    state = store.get_mailbox_state(email)
    if state is None:
        print(f"No mailbox state stored for {email}")
        return

    print(f"Mailbox:        {state.email}")
    print(f"Messages seen:  {state.messages_count}")
    print(f"Last seen UID:  {state.last_seen_uid}")
    print(f"Image bytes:    {state.size}")

    images = store.list_images(email, limit=limit)
    if not images:
        return

    print(f"\nMost recent {len(images)} images:")
    for record in images:
        analysis = store.get_analysis(record.id)
        status = analysis["status"].value if analysis else "pending"
        caption = (analysis or {}).get("caption") or ""
        print(f"  UID {record.uid:<6} {record.name or '-':<30} {record.size_bytes:>9} B  {status:<9} {caption}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Harvest images from the Sent folder once")
    parser.add_argument("--status", action="store_true", help="Print stored mailbox state and recent images, then exit")
    parser.add_argument("--limit", type=int, default=10, help="Number of recent images shown with --status")
    args = parser.parse_args()

    configure_logging()
    settings = load_settings()
    if settings is None:
        return 1
    configure_logging(settings.log_level)

    if args.status:
        print_status(SQLiteImageStore(settings.sqlite_db_path), settings.email_login, args.limit)
        return 0

    watcher = build_watcher(settings)
    try:
        result = watcher.harvest_once()
    except (AuthenticationError, FolderNotFoundError, PersistenceError, AnalysisServiceError) as e:
        print(f"Harvest failed: {e}")
        return 1
    except OperationCancelled:
        print("Harvest cancelled")
        return 1
    finally:
        watcher.dispose()

    print(f"Harvested {settings.email_login} ({result.cursor})")
    print(f"Fetched {result.fetched}, accepted {result.accepted}, images {result.images}, failures {result.failures}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
