"""Face search CLI: rank an event's photos against a query face."""

import argparse


def main() -> None:
    """CLI entry point for face similarity search."""
    parser = argparse.ArgumentParser(description="Race photo face search")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--event", required=True, help="Event ID to search")
    query = parser.add_mutually_exclusive_group(required=True)
    query.add_argument("--embedding", help="JSON file holding a 128 or 512 float list")
    query.add_argument("--image", help="Selfie image; the largest detected face is used")
    parser.add_argument("--limit", type=int, default=None, help="Max photos (default: 50)")
    parser.add_argument("--threshold", type=float, default=None, help="Max cosine distance")
    parser.add_argument("--json", action="store_true", help="Print the raw JSON response")
    args = parser.parse_args()

    import json
    from pathlib import Path

    from race_photo_search.config import FACE_DISTANCE_THRESHOLD, configure_logging
    from race_photo_search.db import get_connection
    from race_photo_search.errors import ValidationError
    from race_photo_search.search.query import FaceSearchEngine, FaceSearchRequest

    configure_logging(args.log_level)

    if args.embedding:
        embedding = json.loads(Path(args.embedding).read_text(encoding="utf-8"))
    else:
        embedding = _embed_selfie(Path(args.image))
        if embedding is None:
            print("No face detected in the query image.")
            return

    conn = get_connection()
    engine = FaceSearchEngine(conn, threshold=args.threshold or FACE_DISTANCE_THRESHOLD)
    try:
        response = engine.search(FaceSearchRequest(args.event, embedding, limit=args.limit))
    except ValidationError as exc:
        print(f"Error: {exc}")
        return
    finally:
        conn.close()

    if args.json:
        print(json.dumps(response.to_dict(), indent=2))
        return

    print(response.message)
    for match in response.photos:
        print(f"  photo {match.photo_id:>6}  {match.similarity:>3}%  distance={match.distance:.4f}")


def _embed_selfie(path):
    """Run the face model on a query image and return the biggest face's vector."""
    from race_photo_search.embedding.insightface_embedder import InsightFaceEmbedder

    faces = InsightFaceEmbedder().detect(path.read_bytes())
    if not faces:
        return None
    largest = max(faces, key=lambda f: f.bbox.width * f.bbox.height)
    return largest.embedding
