"""Infrastructure layer exports."""

from .chat import ChatCompletion, ChatCompletionClient, HttpChatCompletionClient
from .records import InMemoryJobRecordRepository, JobRecordRepository
from .vault import VaultClient
from .workflow import DownloadedArtifact, ManifestDocument, WorkflowClient, WorkflowStatus, select_artifact

__all__ = [
    "ChatCompletion",
    "ChatCompletionClient",
    "DownloadedArtifact",
    "HttpChatCompletionClient",
    "InMemoryJobRecordRepository",
    "JobRecordRepository",
    "ManifestDocument",
    "VaultClient",
    "WorkflowClient",
    "WorkflowStatus",
    "select_artifact",
]
