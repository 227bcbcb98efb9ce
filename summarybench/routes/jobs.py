from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from summarybench.application import get_generation_service
from summarybench.domain import WorkflowKind

router = APIRouter(prefix="/jobs", tags=["jobs"])
usage_router = APIRouter(prefix="/usage", tags=["usage"])


class JobRequest(BaseModel):
    document_id: str
    kind: WorkflowKind
    document_refs: list[str] = Field(min_length=1)
    models: list[str] = Field(min_length=1)
    name: str | None = None
    source_chars: int | None = None


@router.post("")
async def submit_jobs(payload: JobRequest) -> dict:
    """Submit one job per model and return immediately."""
    service = get_generation_service()
    records = await run_in_threadpool(
        service.submit,
        payload.document_id,
        payload.kind,
        payload.document_refs,
        payload.models,
        name=payload.name,
        source_chars=payload.source_chars,
    )
    return {"items": [record.to_dict() for record in records]}


@router.post("/generate")
async def generate(payload: JobRequest) -> dict:
    """Submit and drive every job to a terminal state."""
    service = get_generation_service()
    records = await service.generate(
        payload.document_id,
        payload.kind,
        payload.document_refs,
        payload.models,
        name=payload.name,
        source_chars=payload.source_chars,
    )
    return {"items": [record.to_dict() for record in records]}


@router.get("")
async def list_jobs() -> dict:
    service = get_generation_service()
    return {"items": [record.to_dict() for record in service.list_records()]}


@router.post("/reconcile")
async def reconcile(payload: dict | None = None) -> dict:
    retry_missing_content = bool((payload or {}).get("retry_missing_content", False))
    service = get_generation_service()
    report = await run_in_threadpool(service.reconcile, retry_missing_content=retry_missing_content)
    return report.to_dict()


@router.get("/{document_id}")
async def get_document_jobs(document_id: str) -> dict:
    service = get_generation_service()
    records = service.get_records(document_id)
    if not records:
        raise HTTPException(status_code=404, detail="no jobs for document")
    return {"items": [record.to_dict() for record in records]}


@router.post("/{document_id}/models/{model:path}/refresh")
async def refresh_job(document_id: str, model: str) -> dict:
    service = get_generation_service()
    record = await run_in_threadpool(service.refresh, document_id, model)
    return record.to_dict()


@usage_router.get("")
async def usage_summary() -> dict:
    service = get_generation_service()
    return service.usage_summary().to_dict()
