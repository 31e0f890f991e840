"""Async client for the Kanuni documents and analysis endpoints."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Protocol

import httpx

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
    UploadTicket,
    guess_mime_type,
)
from kanuni.errors import ApiNotFoundError, ApiValidationError, KanuniError
from kanuni.http import BaseApiClient


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from kanuni.streaming.tracker import ProgressTracker


__all__ = ["MIN_ID_PREFIX", "ApiClient", "AuthHeaderProvider"]


MIN_ID_PREFIX = 8
_PAGE_SIZE = 100
_UPLOAD_TIMEOUT = httpx.Timeout(300.0, connect=10.0)


class AuthHeaderProvider(Protocol):
    """Anything that can produce request authentication headers."""

    async def get_auth_headers(self) -> dict[str, str]: ...


class ApiClient(BaseApiClient):
    """Client for documents and analyses.

    Every request is authenticated through the credential provider, which
    refreshes an expiring token before handing out headers.

    Example:
        ```python
        async with ApiClient(settings.api.endpoint, manager) as client:
            document = await client.upload_document(Path("lease.pdf"))
            started = await client.start_analysis(document.id)
            result = await client.wait_for_completion(started.analysis_id)
        ```
    """

    def __init__(  # noqa: PLR0913
        self,
        base_url: str,
        credentials: AuthHeaderProvider,
        *,
        timeout: httpx.Timeout | float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: REST endpoint of the service.
            credentials: Provider of authentication headers.
            timeout: Optional custom timeout configuration.
            max_retries: Maximum retry attempts for transient errors.
            transport: Optional custom transport for testing.
            sleep: Pause between status polls; injectable for tests.
            clock: Monotonic clock for the completion deadline.
        """
        super().__init__(
            base_url,
            timeout=timeout,
            max_retries=max_retries,
            transport=transport,
        )
        self._credentials = credentials
        self._sleep = sleep
        self._clock = clock

    async def _auth_headers(self) -> dict[str, str]:
        return await self._credentials.get_auth_headers()

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def list_documents(
        self,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> DocumentList:
        """Fetch one page of documents."""
        response = await self._request(
            "GET",
            "/documents",
            params={"limit": limit, "offset": offset},
        )
        return DocumentList.model_validate(response.json())

    async def get_document(self, document_id: str) -> Document:
        response = await self._request(
            "GET",
            f"/documents/{document_id}",
            resource=("Document", document_id),
        )
        return Document.model_validate(response.json())

    async def delete_document(self, document_id: str) -> None:
        await self._request(
            "DELETE",
            f"/documents/{document_id}",
            resource=("Document", document_id),
        )

    async def resolve_document_id(self, id_or_prefix: str) -> str:
        """Expand a short document id to the full id.

        Args:
            id_or_prefix: A full id or a prefix of at least eight characters.

        Returns:
            The full document id.

        Raises:
            KanuniError: If the prefix is shorter than eight characters.
            ApiNotFoundError: If no document matches.
            AmbiguousDocumentIdError: If more than one document matches.
        """
        if len(id_or_prefix) < MIN_ID_PREFIX:
            msg = f"Document id {id_or_prefix!r} is too short"
            raise KanuniError(
                msg,
                hint=f"Use at least {MIN_ID_PREFIX} characters of the id.",
            )

        matches: list[str] = []
        offset = 0
        while True:
            page = await self.list_documents(limit=_PAGE_SIZE, offset=offset)
            for document in page.documents:
                if document.id == id_or_prefix:
                    return document.id
                if document.id.startswith(id_or_prefix):
                    matches.append(document.id)
            offset += len(page.documents)
            if not page.documents or offset >= page.total:
                break

        if not matches:
            raise ApiNotFoundError("Document", id_or_prefix)
        if len(matches) > 1:
            raise AmbiguousDocumentIdError(id_or_prefix, len(matches))
        return matches[0]

    async def upload_document(
        self,
        path: Path,
        *,
        category: DocumentCategory | None = None,
        description: str | None = None,
    ) -> Document:
        """Upload a file and return the stored document.

        The upload runs in three steps: the service hands out a presigned
        URL, the bytes are posted there without credentials, and the upload
        is confirmed with its size.

        Args:
            path: File to upload (pdf, doc, docx or txt).
            category: Optional document category.
            description: Optional free-text description.

        Returns:
            The confirmed document.

        Raises:
            ApiValidationError: If the file type is not supported.
            OSError: If the file cannot be read.
        """
        mime_type = guess_mime_type(path)
        if mime_type is None:
            msg = f"Unsupported file type: {path.suffix or path.name}"
            raise ApiValidationError(msg)

        content = path.read_bytes()
        log = self._logger.bind(filename=path.name, size_bytes=len(content))

        body: dict[str, Any] = {
            "filename": path.name,
            "content_type": mime_type,
            "size_bytes": len(content),
        }
        if category is not None:
            body["category"] = category.value
        if description:
            body["description"] = description

        response = await self._request("POST", "/documents", json=body)
        ticket = UploadTicket.model_validate(response.json())
        log = log.bind(document_id=ticket.document_id)
        log.debug("upload_url_issued", expires_at=ticket.expires_at)

        client = await self._ensure_client()
        upload = await client.post(
            ticket.upload_url,
            data={key: str(value) for key, value in ticket.upload_fields.items()},
            files={"file": (path.name, content, mime_type)},
            timeout=_UPLOAD_TIMEOUT,
        )
        self._raise_for_status(upload, resource=("Upload", ticket.document_id))
        log.debug("upload_transferred")

        response = await self._request(
            "POST",
            f"/documents/{ticket.document_id}/confirm",
            json={"size_bytes": len(content)},
            resource=("Document", ticket.document_id),
        )
        document = Document.model_validate(response.json())
        log.info("document_uploaded")
        return document

    async def get_download_url(self, document_id: str) -> DocumentDownload:
        response = await self._request(
            "GET",
            f"/documents/{document_id}/download",
            resource=("Document", document_id),
        )
        return DocumentDownload.model_validate(response.json())

    async def download_document(
        self,
        document_id: str,
        dest: Path,
        *,
        chunk_size: int = 65536,
    ) -> Path:
        """Download a document's bytes.

        Args:
            document_id: The document id.
            dest: Target file, or a directory to place the file in under
                the document's own filename.
            chunk_size: Size of chunks for streaming download.

        Returns:
            The path that was written.
        """
        if dest.is_dir():
            document = await self.get_document(document_id)
            dest = dest / document.filename

        link = await self.get_download_url(document_id)
        client = await self._ensure_client()
        async with client.stream("GET", link.download_url) as response:
            if not response.is_success:
                await response.aread()
            self._raise_for_status(response, resource=("Document", document_id))
            with dest.open("wb") as f:
                async for chunk in response.aiter_bytes(chunk_size=chunk_size):
                    f.write(chunk)
        return dest

    # -------------------------------------------------------------------------
    # Analyses
    # -------------------------------------------------------------------------

    async def start_analysis(
        self,
        document_id: str,
        analysis_type: AnalysisType = AnalysisType.QUICK,
        options: AnalysisOptions | None = None,
    ) -> AnalysisStarted:
        body: dict[str, Any] = {
            "document_id": document_id,
            "analysis_type": AnalysisType(analysis_type).value,
        }
        if options is not None:
            body.update(options.model_dump(exclude_none=True))
        response = await self._request(
            "POST",
            "/analysis/start",
            json=body,
            resource=("Document", document_id),
        )
        started = AnalysisStarted.model_validate(response.json())
        self._logger.info(
            "analysis_started",
            analysis_id=started.analysis_id,
            document_id=document_id,
            analysis_type=started.analysis_type,
        )
        return started

    async def get_analysis_status(self, analysis_id: str) -> AnalysisStatusResponse:
        response = await self._request(
            "GET",
            f"/analysis/{analysis_id}/status",
            resource=("Analysis", analysis_id),
        )
        return AnalysisStatusResponse.model_validate(response.json())

    async def get_analysis_result(self, analysis_id: str) -> AnalysisResult:
        """Fetch the result of a finished analysis.

        Raises:
            AnalysisInProgressError: If the service answers 202.
        """
        response = await self._request(
            "GET",
            f"/analysis/{analysis_id}/result",
            resource=("Analysis", analysis_id),
        )
        if response.status_code == 202:  # noqa: PLR2004
            raise AnalysisInProgressError(analysis_id)
        return AnalysisResult.model_validate(response.json())

    async def cancel_analysis(self, analysis_id: str) -> None:
        await self._request(
            "DELETE",
            f"/analysis/{analysis_id}/cancel",
            resource=("Analysis", analysis_id),
        )

    async def wait_for_completion(
        self,
        analysis_id: str,
        *,
        timeout: float = 300.0,  # noqa: ASYNC109
        poll_interval: float = 2.0,
        tracker: ProgressTracker | None = None,
        on_status: Callable[[AnalysisStatusResponse], None] | None = None,
    ) -> AnalysisResult:
        """Wait until an analysis reaches a terminal status.

        The REST status is authoritative. When a running tracker is given,
        the pause between polls ends early once, when a terminal stream event
        for the analysis arrives; later pauses are full sleeps.

        Args:
            analysis_id: The analysis to wait on.
            timeout: Deadline in seconds.
            poll_interval: Maximum pause between status polls.
            tracker: Optional progress tracker following the analysis.
            on_status: Called with every polled status.

        Returns:
            The analysis result.

        Raises:
            AnalysisFailedError: If the analysis failed.
            AnalysisCancelledError: If the analysis was cancelled.
            CompletionTimeoutError: If the deadline passes first.
        """
        deadline = self._clock() + timeout
        terminal_seen = False

        while True:
            status = await self.get_analysis_status(analysis_id)
            if on_status is not None:
                on_status(status)

            if status.status == AnalysisStatus.COMPLETED:
                return await self.get_analysis_result(analysis_id)
            if status.status == AnalysisStatus.FAILED:
                raise AnalysisFailedError(analysis_id, status.error_message)
            if status.status == AnalysisStatus.CANCELLED:
                raise AnalysisCancelledError(analysis_id)

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise CompletionTimeoutError(analysis_id, timeout)

            pause = min(poll_interval, remaining)
            if tracker is not None and tracker.is_running and not terminal_seen:
                event = await tracker.wait_for_terminal(analysis_id, timeout=pause)
                # Cuts one pause short; REST may still lag behind the stream
                terminal_seen = event is not None
            else:
                await self._sleep(pause)
