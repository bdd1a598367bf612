# routers/files.py — Shared data library (documents not tied to a task)
import os
import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, UploadFile, File as FastAPIFile, Form
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from access_policy import Action
from auth import get_current_user, CurrentUser
from database import get_db_session, transaction
from exceptions import NotFound
from models import StoredFile
from query_engine import AccessScopedQueryEngine, get_query_engine
from schemas import iso
import storage

router = APIRouter(prefix="/api/v1/files", tags=["Data Library"])
logger = logging.getLogger("taskflow.files")


# --- Schemas ---

class FileOut(BaseModel):
    id: int
    file_name: str
    original_name: str
    file_type: str
    file_size: int
    file_url: str
    category: Optional[str] = None
    description: Optional[str] = None
    uploaded_by: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# --- Helpers ---

def _file_to_out(f: StoredFile) -> FileOut:
    return FileOut(
        id=f.id,
        file_name=f.file_name,
        original_name=f.original_name,
        file_type=f.file_type,
        file_size=f.file_size or 0,
        file_url=f.file_url,
        category=f.category,
        description=f.description,
        uploaded_by=f.uploaded_by,
        created_at=iso(f.created_at),
        updated_at=iso(f.updated_at),
    )


async def _get_file(file_id: int, db: AsyncSession) -> StoredFile:
    stored = await db.get(StoredFile, file_id)
    if not stored:
        raise NotFound("File not found")
    return stored


# --- Endpoints ---

@router.get("", response_model=List[FileOut])
async def list_files(
    category: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """All library files, newest first"""
    stmt = select(StoredFile).order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
    if category:
        stmt = stmt.where(StoredFile.category == category)
    result = await db.execute(stmt)
    return [_file_to_out(f) for f in result.scalars().all()]


@router.post("", response_model=FileOut, status_code=201)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    await engine.authorize_mutation(user.id, user.role, Action.UPLOAD_FILE)

    saved = await storage.save_upload(file)
    stored = StoredFile(
        file_name=saved.file_name,
        original_name=saved.original_name,
        file_type=saved.file_type,
        file_size=saved.file_size,
        file_url=saved.file_url,
        category=category or None,
        description=description or None,
        uploaded_by=user.id,
    )
    try:
        async with transaction(db):
            db.add(stored)
    except Exception:
        storage.remove_stored(saved.file_name)
        raise
    return _file_to_out(stored)


@router.get("/{file_id}/download")
async def download_file(
    file_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Serve the stored bytes under the name they were uploaded with"""
    stored = await _get_file(file_id, db)
    path = storage.path_for(stored.file_name)
    if not os.path.exists(path):
        logger.warning(f"File {file_id} is missing from storage")
        raise NotFound("File not found")
    return FileResponse(path, media_type=stored.file_type, filename=stored.original_name)


@router.delete("/{file_id}")
async def delete_file(
    file_id: int,
    user: CurrentUser = Depends(get_current_user),
    engine: AccessScopedQueryEngine = Depends(get_query_engine),
    db: AsyncSession = Depends(get_db_session),
):
    await engine.authorize_mutation(user.id, user.role, Action.DELETE_FILE)
    stored = await _get_file(file_id, db)
    file_name = stored.file_name

    await db.delete(stored)
    await db.commit()
    storage.remove_stored(file_name)

    logger.info(f"File {file_id} deleted by {user.id}")
    return {"status": "deleted", "file_id": file_id}
