"""Auto-tag every untagged processed photo across all events."""

import time

from race_photo_search.config import configure_logging
from race_photo_search.db import get_connection
from race_photo_search.ocr.adapter import TextRecognitionAdapter
from race_photo_search.ocr.engines import build_default_engines
from race_photo_search.ocr.pipeline import BibDetector
from race_photo_search.tagging.resolver import IdentityResolver, backfill_event


def list_events_with_photos(conn) -> list[str]:
    rows = conn.execute(
        "SELECT DISTINCT event_id FROM photos WHERE status = 'processed' ORDER BY event_id"
    ).fetchall()
    return [row[0] for row in rows]


def main() -> None:
    configure_logging()
    conn = get_connection()
    resolver = IdentityResolver(conn, BibDetector(TextRecognitionAdapter(build_default_engines())))

    events = list_events_with_photos(conn)
    print(f"Found {len(events)} events\n")
    total_tagged = 0

    for i, event_id in enumerate(events, 1):
        print(f"[{i}/{len(events)}] {event_id}")
        while True:
            report = backfill_event(resolver, event_id)
            total_tagged += report.tagged
            print(f"  -> {report.tagged}/{report.total_photos} photos auto-tagged")
            if not report.has_more or report.tagged == 0:
                break
        # Pause between events to spare the hosted OCR quotas
        time.sleep(2)

    conn.close()
    print(f"\nDone! Total photos auto-tagged: {total_tagged}")


if __name__ == "__main__":
    main()
