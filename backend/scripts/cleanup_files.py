"""Remove uploaded files that no message attachment references any more.

Soft-deleting a message drops its attachment rows, so the bytes become
orphans here. Recent files are kept because an upload is stored before the
message that carries it is posted.

Usage:
    python scripts/cleanup_files.py [--dry-run] [--min-age-hours N]
"""
import sys
import argparse
import logging
from pathlib import Path
from datetime import datetime, timedelta

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.orm import Session
from supportchat.config import get_settings
from supportchat.database import SessionLocal
from supportchat.models.message import MessageAttachment

logger = logging.getLogger("cleanup_files")


def find_orphan_files(db: Session, upload_dir: Path, min_age: timedelta) -> list:
    """Files in ``upload_dir`` older than ``min_age`` without an attachment row."""
    if not upload_dir.exists():
        return []

    referenced = {row.filename for row in db.query(MessageAttachment.filename).all()}
    cutoff = datetime.now() - min_age

    orphans = []
    for path in upload_dir.iterdir():
        if not path.is_file() or path.name in referenced:
            continue
        if datetime.fromtimestamp(path.stat().st_mtime) > cutoff:
            continue
        orphans.append(path)
    return sorted(orphans)


def cleanup_files(db: Session, upload_dir: Path, min_age: timedelta, dry_run: bool = False) -> int:
    orphans = find_orphan_files(db, upload_dir, min_age)
    logger.info(f"Found {len(orphans)} orphaned file(s) in {upload_dir}")

    removed = 0
    for path in orphans:
        if dry_run:
            logger.info(f"Would delete file: {path}")
            continue
        try:
            path.unlink()
            removed += 1
            logger.info(f"Deleted file: {path}")
        except OSError as e:
            logger.error(f"Error deleting file {path}: {e}")

    return removed


def main():
    parser = argparse.ArgumentParser(description="Remove uploads no longer referenced by any message")
    parser.add_argument("--dry-run", action="store_true", help="List files without deleting them")
    parser.add_argument("--min-age-hours", type=float, default=24.0, help="Skip files newer than this")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper())

    db = SessionLocal()
    try:
        removed = cleanup_files(
            db,
            Path(settings.UPLOAD_DIR),
            timedelta(hours=args.min_age_hours),
            dry_run=args.dry_run
        )
        logger.info(f"Cleanup complete, {removed} file(s) removed")
    finally:
        db.close()


if __name__ == "__main__":
    main()
