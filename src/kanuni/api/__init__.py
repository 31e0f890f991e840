"""REST client for documents and analyses."""

from __future__ import annotations

from kanuni.api.client import MIN_ID_PREFIX, ApiClient, AuthHeaderProvider
from kanuni.api.exceptions import (
    AmbiguousDocumentIdError,
    AnalysisCancelledError,
    AnalysisFailedError,
    AnalysisInProgressError,
    CompletionTimeoutError,
)
from kanuni.api.models import (
    AnalysisOptions,
    AnalysisResult,
    AnalysisStarted,
    AnalysisStatus,
    AnalysisStatusResponse,
    AnalysisType,
    Document,
    DocumentCategory,
    DocumentDownload,
    DocumentList,
    Entity,
    ExtractedDate,
    RiskAssessment,
    UploadTicket,
    guess_mime_type,
)


__all__ = [
    "MIN_ID_PREFIX",
    "AmbiguousDocumentIdError",
    "AnalysisCancelledError",
    "AnalysisFailedError",
    "AnalysisInProgressError",
    "AnalysisOptions",
    "AnalysisResult",
    "AnalysisStarted",
    "AnalysisStatus",
    "AnalysisStatusResponse",
    "AnalysisType",
    "ApiClient",
    "AuthHeaderProvider",
    "CompletionTimeoutError",
    "Document",
    "DocumentCategory",
    "DocumentDownload",
    "DocumentList",
    "Entity",
    "ExtractedDate",
    "RiskAssessment",
    "UploadTicket",
    "guess_mime_type",
]
