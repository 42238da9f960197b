"""Face embedding CLI: detect faces in event photos and report progress."""

import argparse


def main() -> None:
    """CLI entry point for face embedding operations."""
    parser = argparse.ArgumentParser(description="Race photo face embedding")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    # face-ingest
    ingest_parser = subparsers.add_parser(
        "face-ingest", help="Detect faces and store face embeddings for an event"
    )
    ingest_parser.add_argument("--event", required=True, help="Event ID")
    ingest_parser.add_argument("--device", default="cpu", help="Device: cuda or cpu (default: cpu)")
    ingest_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Max number of photos to scan (default: 50)",
    )
    ingest_parser.add_argument(
        "--force",
        action="store_true",
        help="Forget previous scans of this event and scan again",
    )

    # face-status
    status_parser = subparsers.add_parser("face-status", help="Show face detection status")
    status_parser.add_argument("--event", required=True, help="Event ID")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    from race_photo_search.config import configure_logging

    configure_logging(args.log_level)

    if args.command == "face-ingest":
        _cmd_face_ingest(args)
    elif args.command == "face-status":
        _cmd_face_status(args)


def _cmd_face_ingest(args: argparse.Namespace) -> None:
    """Detect faces on unscanned processed photos of an event."""
    from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

    from race_photo_search.config import INSIGHTFACE_MODEL_NAME
    from race_photo_search.db import get_connection
    from race_photo_search.embedding.face_repository import get_unscanned_photo_ids
    from race_photo_search.embedding.ingest import ingest_event_faces
    from race_photo_search.embedding.insightface_embedder import InsightFaceEmbedder

    conn = get_connection()

    if args.force:
        conn.execute(
            """
            DELETE FROM face_scanned_photos
            WHERE model_name = ?
              AND photo_id IN (SELECT id FROM photos WHERE event_id = ?)
            """,
            [INSIGHTFACE_MODEL_NAME, args.event],
        )

    pending = get_unscanned_photo_ids(conn, args.event, INSIGHTFACE_MODEL_NAME, args.limit)
    if not pending:
        print("All processed photos have already been scanned.")
        conn.close()
        return

    print(f"Found {len(pending)} photos to scan.")
    print(f"Loading InsightFace model on {args.device}...")
    embedder = InsightFaceEmbedder(device=args.device)

    with Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TextColumn("{task.completed}/{task.total}"),
    ) as progress:
        task = progress.add_task("Detecting faces", total=len(pending))
        report = ingest_event_faces(
            conn,
            embedder,
            args.event,
            limit=args.limit,
            on_photo=lambda _photo_id: progress.advance(task),
        )

    conn.close()
    print("\nDone.")
    print(f"  Photos scanned: {report.photos}")
    print(f"  Faces detected: {report.faces}")
    if report.errors > 0:
        print(f"  Errors: {report.errors}")


def _cmd_face_status(args: argparse.Namespace) -> None:
    """Show face detection status for an event."""
    from race_photo_search.config import DB_PATH, INSIGHTFACE_MODEL_NAME
    from race_photo_search.db import get_connection
    from race_photo_search.embedding.face_repository import get_face_stats

    conn = get_connection()
    total, scanned, faces = get_face_stats(conn, args.event, INSIGHTFACE_MODEL_NAME)
    conn.close()
    print(f"Model: {INSIGHTFACE_MODEL_NAME}")
    print(f"DB: {DB_PATH}")
    print(f"Scanned: {scanned}/{total} photos")
    print(f"Faces detected: {faces}")
    if scanned > 0:
        print(f"Average faces per photo: {faces / scanned:.1f}")
    if total > 0:
        print(f"Progress: {scanned / total * 100:.1f}%")
