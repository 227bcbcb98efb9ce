"""Infrastructure layer for job record persistence."""
from __future__ import annotations

from typing import Protocol

from summarybench.domain import JobRecord


class JobRecordRepository(Protocol):
    """Persistence contract for job records keyed by (document_id, model)."""

    def get(self, document_id: str, model: str) -> JobRecord | None: ...

    def put(self, record: JobRecord) -> None: ...

    def list(self) -> list[JobRecord]: ...

    def list_for_document(self, document_id: str) -> list[JobRecord]: ...

    def reset(self) -> None: ...


class InMemoryJobRecordRepository:
    """Simple in-memory repository for fast iteration and tests.

    Records go in and come out as copies, so only ``put`` changes stored state.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], JobRecord] = {}

    def get(self, document_id: str, model: str) -> JobRecord | None:
        record = self._records.get((document_id, model))
        return record.copy() if record else None

    def put(self, record: JobRecord) -> None:
        record.touch()
        self._records[record.key] = record.copy()

    def list(self) -> list[JobRecord]:
        return [record.copy() for record in self._records.values()]

    def list_for_document(self, document_id: str) -> list[JobRecord]:
        return [record.copy() for key, record in self._records.items() if key[0] == document_id]

    def reset(self) -> None:
        self._records.clear()
