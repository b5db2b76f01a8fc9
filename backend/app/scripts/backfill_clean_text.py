"""CLI utility to recompute the readable text of stored emails from their HTML bodies.

Usage:
  python -m backend.app.scripts.backfill_clean_text            # only rows missing clean_text
  python -m backend.app.scripts.backfill_clean_text --force    # recompute every HTML email
  python -m backend.app.scripts.backfill_clean_text --user 3
"""
import argparse

from ..db.database import SessionLocal, ensure_schema  # type: ignore
from ..services.email_service import backfill_clean_text


def main(argv=None):
    parser = argparse.ArgumentParser(description="Backfill clean_text for stored emails")
    parser.add_argument("--user", dest="user_id", type=int, default=None, help="Limit to one account id")
    parser.add_argument("--force", action="store_true", help="Recompute rows that already have clean_text")
    args = parser.parse_args(argv)

    ensure_schema()
    session = SessionLocal()
    try:
        updated = backfill_clean_text(session, user_id=args.user_id, force=args.force)
        print(f"Backfill complete: {updated} emails updated")
    finally:
        session.close()
    return updated


if __name__ == "__main__":  # pragma: no cover
    main()
