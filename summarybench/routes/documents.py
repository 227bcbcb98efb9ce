from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from summarybench.application import get_generation_service

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("")
async def upload_document(file: UploadFile = File(...)) -> dict:
    """Store a source document in the vault and return its presigned reference."""
    try:
        if not file.filename:
            raise HTTPException(status_code=400, detail="Uploaded file must have a filename")
        data = await file.read()
        if not data:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")

        service = get_generation_service()
        return await run_in_threadpool(
            service.prepare_document,
            Path(file.filename).name,
            data,
            file.content_type,
        )
    finally:
        await file.close()


@router.get("/{document_id}")
async def document_status(document_id: str) -> dict:
    service = get_generation_service()
    return await run_in_threadpool(service.document_status, document_id)


@router.get("/{document_id}/text")
async def document_text(document_id: str) -> dict:
    """OCR text of a source document, used to size cost estimates."""
    service = get_generation_service()
    return await run_in_threadpool(service.document_text, document_id)
