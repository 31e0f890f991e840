"""Pydantic models for the document and analysis endpoints."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - needed at runtime for Pydantic
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - needed at runtime for Pydantic
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


__all__ = [
    "AnalysisOptions",
    "AnalysisResult",
    "AnalysisStarted",
    "AnalysisStatus",
    "AnalysisStatusResponse",
    "AnalysisType",
    "ApiBaseModel",
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


class ApiBaseModel(BaseModel):
    """Base model for REST payloads."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DocumentCategory(StrEnum):
    """Category assigned to a document at upload."""

    LEGAL = "legal"
    CONTRACT = "contract"
    FINANCIAL = "financial"
    MEDICAL = "medical"
    PERSONAL = "personal"
    OTHER = "other"


class AnalysisType(StrEnum):
    """Kind of analysis to run."""

    QUICK = "quick"
    DETAILED = "detailed"
    LEGAL = "legal"
    FINANCIAL = "financial"
    MEDICAL = "medical"


class AnalysisStatus(StrEnum):
    """Server-side lifecycle of an analysis."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {
            AnalysisStatus.COMPLETED,
            AnalysisStatus.FAILED,
            AnalysisStatus.CANCELLED,
        }


_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    ),
    ".txt": "text/plain",
}


def guess_mime_type(path: Path) -> str | None:
    """Return the MIME type for the supported document extensions."""
    return _MIME_TYPES.get(path.suffix.lower())


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class UploadTicket(ApiBaseModel):
    """Response of ``POST /documents``: where and how to upload the bytes."""

    document_id: str
    upload_url: str
    upload_fields: dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime | None = None


class Document(ApiBaseModel):
    """A stored document."""

    id: str
    filename: str
    category: DocumentCategory | None = None
    size_bytes: int | None = None
    mime_type: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    download_url: str | None = None
    analysis_status: str | None = None
    analysis_id: str | None = None
    analyzed_at: datetime | None = None


class DocumentList(ApiBaseModel):
    """One page of ``GET /documents``."""

    documents: list[Document] = Field(default_factory=list)
    total: int = 0
    limit: int = 0
    offset: int = 0


class DocumentDownload(ApiBaseModel):
    """Short-lived download link."""

    download_url: str
    expires_at: datetime | None = None


# ---------------------------------------------------------------------------
# Analyses
# ---------------------------------------------------------------------------


class AnalysisOptions(ApiBaseModel):
    """Optional switches for ``POST /analysis/start``."""

    priority: int | None = None
    extract_entities: bool | None = None
    extract_dates: bool | None = None
    extract_financial: bool | None = None
    perform_risk_assessment: bool | None = None


class AnalysisStarted(ApiBaseModel):
    """Response of ``POST /analysis/start``."""

    analysis_id: str
    document_id: str
    analysis_type: AnalysisType
    status: AnalysisStatus
    created_at: datetime | None = None
    estimated_completion_time: int | None = Field(
        default=None,
        description="Estimated seconds until completion",
    )


class AnalysisStatusResponse(ApiBaseModel):
    """Response of ``GET /analysis/{id}/status``."""

    id: str
    document_id: str
    status: AnalysisStatus
    progress: int | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None


class RiskAssessment(ApiBaseModel):
    level: str
    factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class Entity(ApiBaseModel):
    entity_type: str
    value: str
    confidence: float = 0.0


class ExtractedDate(ApiBaseModel):
    date: str
    context: str = ""
    date_type: str = ""


class AnalysisResult(ApiBaseModel):
    """Response of ``GET /analysis/{id}/result``."""

    id: str
    document_id: str
    analysis_type: AnalysisType
    status: AnalysisStatus
    result: Any | None = None
    summary: str | None = None
    key_findings: list[str] = Field(default_factory=list)
    risk_assessment: RiskAssessment | None = None
    entities: list[Entity] = Field(default_factory=list)
    dates: list[ExtractedDate] = Field(default_factory=list)
    financial_data: Any | None = None
    completed_at: datetime | None = None
    processing_time_ms: int | None = None
