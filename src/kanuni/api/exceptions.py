"""Exceptions specific to documents and analyses."""

from __future__ import annotations

from kanuni.errors import KanuniError


__all__ = [
    "AmbiguousDocumentIdError",
    "AnalysisCancelledError",
    "AnalysisFailedError",
    "AnalysisInProgressError",
    "CompletionTimeoutError",
]


class AnalysisFailedError(KanuniError):
    """Raised when the server reports that an analysis failed.

    Attributes:
        analysis_id: The failed analysis.
    """

    def __init__(self, analysis_id: str, reason: str | None = None) -> None:
        super().__init__(f"Analysis {analysis_id} failed: {reason or 'unknown error'}")
        self.analysis_id = analysis_id
        self.reason = reason


class AnalysisCancelledError(KanuniError):
    """Raised when waiting on an analysis that was cancelled."""

    def __init__(self, analysis_id: str) -> None:
        super().__init__(f"Analysis {analysis_id} was cancelled")
        self.analysis_id = analysis_id


class AnalysisInProgressError(KanuniError):
    """Raised when a result is requested before the analysis finished (202)."""

    default_hint = "Check again later with 'kanuni analysis result'."

    def __init__(self, analysis_id: str) -> None:
        super().__init__(f"Analysis {analysis_id} is still in progress")
        self.analysis_id = analysis_id


class CompletionTimeoutError(KanuniError, TimeoutError):
    """Raised when an analysis does not finish before the caller's deadline.

    Distinct from :class:`AnalysisFailedError`: the analysis may still finish.

    Attributes:
        analysis_id: The analysis being waited on.
        timeout: The deadline in seconds.
    """

    default_hint = "The analysis keeps running; check it later with 'kanuni analysis status'."

    def __init__(self, analysis_id: str, timeout: float) -> None:
        super().__init__(f"Analysis {analysis_id} did not complete within {timeout:g}s")
        self.analysis_id = analysis_id
        self.timeout = timeout


class AmbiguousDocumentIdError(KanuniError):
    """Raised when a short document id matches several documents."""

    default_hint = "Use more characters of the id, or the full id."

    def __init__(self, prefix: str, matches: int) -> None:
        super().__init__(f"Document id prefix {prefix!r} matches {matches} documents")
        self.prefix = prefix
        self.matches = matches
