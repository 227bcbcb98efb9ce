"""Application service layer for summary generation and reconciliation."""
from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from summarybench.core.cost import UsageSummary, summarise_usage
from summarybench.core.errors import ConfigurationError, NotFoundError, SubmissionError
from summarybench.core.settings import Settings
from summarybench.domain import JobRecord, WorkflowKind
from summarybench.extraction.pipeline import ContentThresholds, TieredExtractor
from summarybench.extraction.structural import BinaryTextExtractor, is_pdf
from summarybench.extraction.vision import VisionExtractionFallback
from summarybench.infrastructure import (
    ChatCompletionClient,
    HttpChatCompletionClient,
    InMemoryJobRecordRepository,
    JobRecordRepository,
    VaultClient,
    WorkflowClient,
)
from summarybench.workers.generation import GenerationWorker
from summarybench.workers.poller import CancellationToken, JobPoller
from summarybench.workers.reconcile import ReconciliationSweep, SweepReport
from summarybench.workers.results import ResultFetcher


LOGGER = logging.getLogger(__name__)

VAULT_NAME = "summarybench-sources"


class GenerationService:
    """Coordinates submission, polling, extraction and reconciliation use cases."""

    def __init__(
        self,
        repository: JobRecordRepository,
        *,
        settings: Settings | None = None,
        workflow_client: WorkflowClient | None = None,
        vault_client: VaultClient | None = None,
        chat_client: ChatCompletionClient | None = None,
        thresholds: ContentThresholds | None = None,
        on_completed: Callable[[JobRecord], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository
        self._settings = settings or Settings()
        self._workflow_client = workflow_client
        self._vault_client = vault_client
        self._vault_id: str | None = None
        self._on_completed = on_completed or self._log_completed

        settings = self._settings
        vision = None
        if chat_client is not None:
            vision = VisionExtractionFallback(
                chat_client,
                model=settings.vision_model,
                timeout=settings.vision_timeout_seconds,
            )
        self._extractor = TieredExtractor(vision=vision, thresholds=thresholds or ContentThresholds())

        self._worker: GenerationWorker | None = None
        self._sweep: ReconciliationSweep | None = None
        if workflow_client is not None:
            poller = JobPoller(
                workflow_client,
                interval=settings.poll_interval_seconds,
                budget=settings.poll_budget_seconds,
                max_consecutive_errors=settings.poll_max_consecutive_errors,
                backoff_cap=settings.poll_backoff_cap_seconds,
                sleep=sleep,
                clock=clock,
            )
            fetcher = ResultFetcher(workflow_client, self._extractor)
            self._worker = GenerationWorker(
                workflow_client,
                poller,
                fetcher,
                repository,
                max_concurrent=settings.max_concurrent_jobs,
            )
            self._sweep = ReconciliationSweep(poller, fetcher, on_completed=self._on_completed)

    @staticmethod
    def _log_completed(record: JobRecord) -> None:
        LOGGER.info("Summary for %s/%s ready for grading", record.document_id, record.model)

    def _require_worker(self) -> GenerationWorker:
        if self._worker is None:
            raise SubmissionError("Workflow service is not configured", unconfigured=True)
        return self._worker

    def _require_sweep(self) -> ReconciliationSweep:
        if self._sweep is None:
            raise ConfigurationError("Workflow service is not configured")
        return self._sweep

    @property
    def configured(self) -> dict[str, bool]:
        return {
            "workflow": self._workflow_client is not None,
            "vault": self._vault_client is not None,
            "vision": self._extractor.vision is not None,
        }

    # ------------------------------------------------------------------
    # source documents
    # ------------------------------------------------------------------
    def prepare_document(self, filename: str, data: bytes, content_type: str | None = None) -> dict[str, object]:
        """Store a source document in the vault and return a reference usable for submission."""

        if self._vault_client is None:
            raise ConfigurationError("Vault service is not configured")
        if self._vault_id is None:
            self._vault_id = self._vault_client.create_vault(VAULT_NAME, "Source documents for summary generation").id

        uploaded = self._vault_client.upload(self._vault_id, filename, data, content_type or "application/pdf")
        ingest = self._vault_client.trigger_ingest(self._vault_id, uploaded.object_id)
        document_ref = self._vault_client.get_presigned_url(self._vault_id, uploaded.object_id)

        source_chars = None
        if is_pdf(data):
            source_chars = BinaryTextExtractor().extract(data).char_count

        return {
            "document_id": uploaded.object_id,
            "vault_id": self._vault_id,
            "filename": uploaded.filename,
            "size_bytes": uploaded.size_bytes,
            "document_ref": document_ref,
            "ingestion_status": ingest.get("status"),
            "source_chars": source_chars,
        }

    def _require_vault(self) -> tuple[VaultClient, str]:
        if self._vault_client is None:
            raise ConfigurationError("Vault service is not configured")
        if self._vault_id is None:
            raise NotFoundError("No source documents have been uploaded")
        return self._vault_client, self._vault_id

    def document_status(self, document_id: str) -> dict[str, object]:
        """Report the vault's ingestion state for an uploaded source document."""

        vault_client, vault_id = self._require_vault()
        obj = vault_client.get_object(vault_id, document_id)
        return {
            "document_id": obj.id,
            "vault_id": vault_id,
            "filename": obj.filename,
            "ingestion_status": obj.ingestion_status,
            "ingestion_error": obj.ingestion_error,
            "page_count": obj.page_count,
            "text_length": obj.text_length,
        }

    def document_text(self, document_id: str) -> dict[str, object]:
        """Return the vault's OCR text for a source document and its length."""

        vault_client, vault_id = self._require_vault()
        text = vault_client.get_text(vault_id, document_id)
        return {"document_id": document_id, "text": text, "source_chars": len(text)}

    # ------------------------------------------------------------------
    # job orchestration
    # ------------------------------------------------------------------
    def submit(
        self,
        document_id: str,
        kind: WorkflowKind,
        document_refs: Iterable[str],
        models: Iterable[str],
        *,
        name: str | None = None,
        source_chars: int | None = None,
    ) -> list[JobRecord]:
        worker = self._require_worker()
        return worker.submit(document_id, kind, document_refs, models, name=name, source_chars=source_chars)

    async def generate(
        self,
        document_id: str,
        kind: WorkflowKind,
        document_refs: Iterable[str],
        models: Iterable[str],
        *,
        name: str | None = None,
        source_chars: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[JobRecord]:
        worker = self._require_worker()
        return await worker.generate(
            document_id,
            kind,
            document_refs,
            models,
            name=name,
            source_chars=source_chars,
            cancel=cancel,
        )

    def _store_changed(self, before: Iterable[JobRecord], report: SweepReport) -> None:
        originals = {record.key: record.to_dict() for record in before}
        for record in report.records:
            if record.to_dict() != originals.get(record.key):
                self._repository.put(record)

    def reconcile(self, *, retry_missing_content: bool = False) -> SweepReport:
        sweep = self._require_sweep()
        records = self._repository.list()
        report = sweep.run(records, retry_missing_content=retry_missing_content)
        self._store_changed(records, report)
        return report

    def refresh(self, document_id: str, model: str) -> JobRecord:
        sweep = self._require_sweep()
        record = self._repository.get(document_id, model)
        if record is None:
            raise NotFoundError(f"No job record for {document_id}/{model}")
        report = sweep.run([record], retry_missing_content=True)
        self._store_changed([record], report)
        return report.records[0]

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def list_records(self) -> list[JobRecord]:
        return self._repository.list()

    def get_records(self, document_id: str) -> list[JobRecord]:
        return self._repository.list_for_document(document_id)

    def get_record(self, document_id: str, model: str) -> JobRecord | None:
        return self._repository.get(document_id, model)

    def usage_summary(self) -> UsageSummary:
        return summarise_usage(record.usage for record in self._repository.list())

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self._repository.reset()
        self._vault_id = None


def build_generation_service(settings: Settings, repository: JobRecordRepository | None = None) -> GenerationService:
    """Construct a service with every collaborator the settings have keys for."""

    workflow_client = None
    if settings.workflow_configured:
        workflow_client = WorkflowClient(
            settings.casemark_api_key,
            api_base=settings.casemark_api_url,
            timeout=settings.http_timeout_seconds,
        )
    vault_client = None
    chat_client = None
    if settings.storage_configured:
        vault_client = VaultClient(
            settings.case_api_key,
            api_base=settings.case_api_url,
            timeout=settings.http_timeout_seconds,
        )
        chat_client = HttpChatCompletionClient(
            settings.case_api_key,
            api_base=settings.case_api_url,
            timeout=settings.vision_timeout_seconds,
        )
    return GenerationService(
        repository or InMemoryJobRecordRepository(),
        settings=settings,
        workflow_client=workflow_client,
        vault_client=vault_client,
        chat_client=chat_client,
    )


_repository = InMemoryJobRecordRepository()
_service = GenerationService(_repository)


def get_generation_service() -> GenerationService:
    """Return the singleton generation service for the process."""

    return _service


def configure_generation_service(service: GenerationService) -> None:
    """Install the service used by the HTTP routes."""

    global _service
    _service = service


def reset_generation_state() -> None:
    """Reset the in-memory store (used in tests)."""

    _service.reset()
