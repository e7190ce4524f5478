import logging
import uuid
from pathlib import Path
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from supportchat.config import get_settings
from supportchat.database import get_db
from supportchat.models.message import MessageAttachment
from supportchat.schemas import AttachmentIn
from supportchat.services.access_guard import AccessGuard
from supportchat.utils.security import Identity, get_current_identity, resolve_identity

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/uploads", tags=["Uploads"])

ALLOWED_EXTENSIONS = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.pdf': 'application/pdf',
    '.doc': 'application/msword',
    '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    '.txt': 'text/plain',
    '.xls': 'application/vnd.ms-excel',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}

CHUNK_SIZE = 1024 * 1024


def get_upload_dir() -> Path:
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


@router.post("/", response_model=AttachmentIn)
async def upload_file(
    file: UploadFile = File(...),
    identity: Identity = Depends(get_current_identity)
):
    """Store a file and return the attachment descriptor to send with a message."""
    original_name = Path(file.filename or "").name
    ext = Path(original_name).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(400, "File type not allowed")

    filename = f"{uuid.uuid4()}{ext}"
    file_path = get_upload_dir() / filename

    try:
        size = 0
        with file_path.open("wb") as buffer:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.MAX_UPLOAD_SIZE:
                    buffer.close()
                    file_path.unlink()  # Delete partial file
                    raise HTTPException(413, f"File too large (max {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB)")
                buffer.write(chunk)
    except HTTPException:
        raise
    except OSError as e:
        if file_path.exists():
            file_path.unlink()
        logger.error(f"Could not save upload {original_name!r} for user {identity.user_id}: {e}")
        raise HTTPException(500, f"Could not save file: {e}")

    logger.info(f"User {identity.user_id} uploaded {filename} ({size} bytes)")
    return AttachmentIn(
        filename=filename,
        original_name=original_name,
        mime_type=ALLOWED_EXTENSIONS[ext],
        size=size,
        path=str(file_path),
        thumbnail_path=None
    )


@router.get("/{filename}")
async def get_file(
    filename: str,
    token: str = Query(...),
    db: Session = Depends(get_db)
):
    """Serve an uploaded file to members of the conversation it was sent in."""
    identity = resolve_identity(db, token)

    attachment = db.query(MessageAttachment).filter(MessageAttachment.filename == filename).first()
    if not attachment:
        raise HTTPException(404, "File not found")
    AccessGuard.get_message(db, identity, attachment.message_id)

    file_path = get_upload_dir() / Path(filename).name
    if not file_path.exists():
        raise HTTPException(404, "File not found")

    return FileResponse(file_path, media_type=attachment.mime_type, filename=attachment.original_name)
