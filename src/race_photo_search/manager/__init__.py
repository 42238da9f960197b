"""Photo management CLI: register photos and rosters, tag photos, backfill events."""

import argparse


def main() -> None:
    """CLI entry point for photo management."""
    parser = argparse.ArgumentParser(description="Race photo manager")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    # init-db
    subparsers.add_parser("init-db", help="Initialize the database schema")

    # add-photo
    add_parser = subparsers.add_parser("add-photo", help="Register a photo file for an event")
    add_parser.add_argument("--event", required=True, help="Event ID")
    add_parser.add_argument("--file", required=True, help="Path to the image file")
    add_parser.add_argument("--url", help="Public URL of the image, if hosted")
    add_parser.add_argument(
        "--resolve", action="store_true", help="Run bib detection and auto-tagging right away"
    )
    add_parser.add_argument("--fast", action="store_true", help="Skip extra image variants")

    # import-runners
    imp_parser = subparsers.add_parser("import-runners", help="Import a roster CSV for an event")
    imp_parser.add_argument("--event", required=True, help="Event ID")
    imp_parser.add_argument(
        "--csv", required=True, help="CSV with bib_number, full_name[, category, team]"
    )

    # list
    list_parser = subparsers.add_parser("list", help="List photos in DB")
    list_parser.add_argument("--event", help="Filter by event ID")
    list_parser.add_argument(
        "--status", choices=["pending", "processed", "failed"], help="Filter by status"
    )

    # runners
    runners_parser = subparsers.add_parser("runners", help="List runners of an event")
    runners_parser.add_argument("--event", required=True, help="Event ID")
    runners_parser.add_argument("--search", help="Bib or name substring")

    # tags
    tags_parser = subparsers.add_parser("tags", help="Show tags of a photo")
    tags_parser.add_argument("photo_id", type=int)

    # tag
    tag_parser = subparsers.add_parser("tag", help="Replace a photo's tags with manual tags")
    tag_parser.add_argument("photo_id", type=int)
    tag_parser.add_argument("runner_ids", type=int, nargs="*", help="Runner IDs to tag")
    tag_parser.add_argument("--user", required=True, help="ID of the user tagging")

    # auto-tag
    auto_parser = subparsers.add_parser("auto-tag", help="Detect bibs and auto-tag one photo")
    auto_parser.add_argument("photo_id", type=int)
    auto_parser.add_argument("--fast", action="store_true", help="Skip extra image variants")

    # backfill
    bf_parser = subparsers.add_parser(
        "backfill", help="Auto-tag processed photos of an event that have no tags"
    )
    bf_parser.add_argument("--event", required=True, help="Event ID")
    bf_parser.add_argument("--limit", type=int, default=50, help="Max photos (default: 50)")
    bf_parser.add_argument(
        "--delay", type=float, default=None, help="Seconds between photos (default: BATCH_DELAY)"
    )
    bf_parser.add_argument("--fast", action="store_true", help="Skip extra image variants")

    # delete-photo
    del_parser = subparsers.add_parser(
        "delete-photo", help="Delete a photo with its tags and face embeddings"
    )
    del_parser.add_argument("photo_id", type=int)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from race_photo_search.config import configure_logging

    configure_logging(args.log_level)

    if args.command == "init-db":
        from race_photo_search.db import get_connection

        conn = get_connection()
        conn.close()
        print("Database initialized successfully.")

    elif args.command == "add-photo":
        _cmd_add_photo(args)

    elif args.command == "import-runners":
        _cmd_import_runners(args)

    elif args.command == "list":
        from race_photo_search.db import get_connection
        from race_photo_search.manager.repository import list_photos

        conn = get_connection()
        photos = list_photos(conn, event_id=args.event, status=args.status)
        conn.close()
        for photo in photos:
            path_info = photo.relative_path or photo.image_url
            print(f"{photo.id:>6}  [{photo.event_id}] {photo.status.value:<9} {path_info}")

    elif args.command == "runners":
        from race_photo_search.db import get_connection
        from race_photo_search.manager.runner_repository import list_runners

        conn = get_connection()
        runners = list_runners(conn, args.event, search=args.search)
        conn.close()
        for runner in runners:
            auto = " (auto)" if runner.auto_detected else ""
            print(f"{runner.id:>6}  {runner.bib_number:>8}  {runner.full_name}{auto}")

    elif args.command == "tags":
        from race_photo_search.db import get_connection
        from race_photo_search.manager.tag_repository import list_photo_tags

        conn = get_connection()
        tags = list_photo_tags(conn, args.photo_id)
        conn.close()
        for tag in tags:
            print(f"  runner {tag.runner_id:>6}  {tag.confidence:.2f}  {tag.source}")

    elif args.command == "tag":
        from race_photo_search.db import get_connection
        from race_photo_search.errors import PhotoNotFoundError
        from race_photo_search.manager.tag_repository import set_manual_tags

        conn = get_connection()
        try:
            set_manual_tags(conn, args.photo_id, args.runner_ids, args.user)
        except PhotoNotFoundError as exc:
            print(f"Error: {exc}")
            return
        finally:
            conn.close()
        print(f"Tagged photo {args.photo_id} with {len(set(args.runner_ids))} runner(s).")

    elif args.command == "auto-tag":
        from race_photo_search.db import get_connection

        conn = get_connection()
        resolver = _build_resolver(conn, fast=args.fast)
        result = resolver.resolve_photo(args.photo_id)
        conn.close()
        print(f"Photo {result.photo_id}: {result.outcome.value} - {result.message}")
        if result.bib_numbers:
            print(f"  Bibs: {', '.join(result.bib_numbers)}")

    elif args.command == "backfill":
        _cmd_backfill(args)

    elif args.command == "delete-photo":
        from race_photo_search.db import get_connection
        from race_photo_search.manager.repository import delete_photo

        conn = get_connection()
        delete_photo(conn, args.photo_id)
        conn.close()
        print(f"Deleted photo {args.photo_id}.")


def _build_resolver(conn, fast: bool = False):
    """Wire the production recognition chain into a resolver."""
    from race_photo_search.ocr.adapter import TextRecognitionAdapter
    from race_photo_search.ocr.engines import build_default_engines
    from race_photo_search.ocr.pipeline import BibDetector
    from race_photo_search.tagging.resolver import IdentityResolver

    adapter = TextRecognitionAdapter(build_default_engines())
    return IdentityResolver(conn, BibDetector(adapter, fast=fast))


def _cmd_add_photo(args: argparse.Namespace) -> None:
    """Copy an image into the data directory and register it as processed."""
    import io
    from pathlib import Path

    from PIL import Image

    from race_photo_search.db import get_connection
    from race_photo_search.manager.downloader import store_upload
    from race_photo_search.manager.repository import insert_photo
    from race_photo_search.models import Photo, PhotoStatus

    source = Path(args.file)
    if not source.exists():
        print(f"Error: {source} does not exist")
        return
    content = source.read_bytes()
    with Image.open(io.BytesIO(content)) as img:
        width, height = img.size

    relative_path = store_upload(args.event, source.name, content)
    conn = get_connection()
    photo_id = insert_photo(
        conn,
        Photo(
            id=None,
            event_id=args.event,
            image_url=args.url,
            relative_path=relative_path,
            original_filename=source.name,
            width=width,
            height=height,
            file_size_bytes=len(content),
            status=PhotoStatus.PROCESSED,
            created_at=None,
        ),
    )
    print(f"Registered photo {photo_id} ({width}x{height}) at {relative_path}.")

    if args.resolve:
        result = _build_resolver(conn, fast=args.fast).resolve_photo(photo_id)
        print(f"  Auto-tag: {result.outcome.value} - {result.message}")
    conn.close()


def _cmd_import_runners(args: argparse.Namespace) -> None:
    """Import roster entries from a CSV file."""
    import csv
    from pathlib import Path

    from race_photo_search.db import get_connection
    from race_photo_search.manager.runner_repository import insert_runners
    from race_photo_search.models import Runner
    from race_photo_search.ocr.aggregator import is_valid_bib_number

    path = Path(args.csv)
    runners = []
    skipped = 0
    with path.open(newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            bib = (row.get("bib_number") or "").strip().upper()
            name = (row.get("full_name") or "").strip()
            if not is_valid_bib_number(bib) or not name:
                skipped += 1
                continue
            runners.append(
                Runner(
                    id=None,
                    event_id=args.event,
                    bib_number=bib,
                    full_name=name,
                    category=(row.get("category") or "").strip() or None,
                    team=(row.get("team") or "").strip() or None,
                    auto_detected=False,
                    created_at=None,
                )
            )

    conn = get_connection()
    inserted = insert_runners(conn, runners)
    conn.close()
    print(f"Imported {inserted} runner(s) into '{args.event}'.")
    if skipped:
        print(f"  Skipped {skipped} row(s) with a missing name or invalid bib number.")


def _cmd_backfill(args: argparse.Namespace) -> None:
    """Auto-tag untagged processed photos of an event."""
    from rich.console import Console
    from rich.table import Table

    from race_photo_search.config import BATCH_DELAY
    from race_photo_search.db import get_connection
    from race_photo_search.tagging.resolver import backfill_event

    console = Console()
    conn = get_connection()
    resolver = _build_resolver(conn, fast=args.fast)
    delay = BATCH_DELAY if args.delay is None else args.delay

    with console.status(f"[bold blue]Backfilling event {args.event}..."):
        report = backfill_event(resolver, args.event, limit=args.limit, delay=delay)
    conn.close()

    if report.total_photos == 0:
        print("No photos to process.")
        return

    table = Table(title=f"Backfill: {args.event}")
    table.add_column("Photo", justify="right")
    table.add_column("Outcome")
    table.add_column("Bibs")
    table.add_column("Message")
    for result in report.results:
        table.add_row(
            str(result.photo_id),
            result.outcome.value,
            ", ".join(result.bib_numbers),
            result.message,
        )
    console.print(table)
    print(f"Processed {report.total_photos} photo(s), auto-tagged {report.tagged}.")
    if report.has_more:
        print("More untagged photos remain; run backfill again.")
