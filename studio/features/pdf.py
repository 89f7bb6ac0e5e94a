"""PDF upload and analysis.

Uploading and analysing are separate managers: an upload can proceed while an
earlier analysis is still shown, and a new analysis only supersedes analyses.
"""

import asyncio
import functools

import structlog

from studio.config import settings
from studio.core.credentials import CredentialStore
from studio.core.exceptions import InvalidRequestError, ProcessingFailedError
from studio.schemas.pdf import PdfAnalysisRequest, PdfAnalysisResponse, PdfUploadRequest, ProcessedPdf
from studio.services.manager import BackendFactory, CancelToken, RequestManager
from studio.services.provider.base import ProviderBackend, extract_text, file_part, text_part, total_tokens

logger = structlog.get_logger()

PDF_MIME_TYPE = "application/pdf"


async def upload_pdf(
    backend: ProviderBackend,
    request: PdfUploadRequest,
    token: CancelToken,
    poll_interval: float | None = None,
    max_attempts: int | None = None,
) -> ProcessedPdf:
    """Upload a PDF and wait until the provider has finished processing it."""
    token.raise_if_cancelled()
    interval = settings.studio_file_poll_interval if poll_interval is None else poll_interval
    attempts_left = settings.studio_file_poll_max_attempts if max_attempts is None else max_attempts

    file = await backend.upload_file(request.data, PDF_MIME_TYPE, request.display_name)
    token.raise_if_cancelled()
    name = file.get("name")
    if not name:
        raise ProcessingFailedError("File upload failed: no file name received.")

    while file.get("state") == "PROCESSING":
        if attempts_left <= 0:
            raise ProcessingFailedError("PDF processing did not finish in time. Please try again.")
        attempts_left -= 1
        logger.debug("pdf_processing_wait", file=name)
        await asyncio.sleep(interval)
        token.raise_if_cancelled()
        file = await backend.get_file(name)

    if file.get("state") == "FAILED":
        raise ProcessingFailedError("PDF processing failed. The file might be corrupted or unsupported.")
    if not file.get("uri"):
        raise ProcessingFailedError("File upload failed: no file reference received.")

    logger.info("pdf_uploaded", file=name, size=len(request.data))
    return ProcessedPdf(
        name=name,
        uri=file["uri"],
        mime_type=file.get("mimeType") or PDF_MIME_TYPE,
        display_name=request.display_name,
        file_name=request.file_name,
        source=request.source,
        original_url=request.original_url,
        size_bytes=len(request.data),
    )


async def analyze_pdfs(
    backend: ProviderBackend, request: PdfAnalysisRequest, token: CancelToken
) -> PdfAnalysisResponse:
    token.raise_if_cancelled()
    if not request.pdfs:
        raise InvalidRequestError("Please upload at least one PDF to analyze.")
    model = request.model or settings.studio_pdf_model

    parts = [text_part(request.prompt)]
    parts.extend(file_part(pdf.uri, pdf.mime_type) for pdf in request.pdfs)
    token.raise_if_cancelled()

    response = await backend.generate_content(model, [{"parts": parts}])
    token.raise_if_cancelled()

    result = extract_text(response)
    if not result:
        raise ProcessingFailedError("No analysis result received from the AI model.")

    return PdfAnalysisResponse(
        model=model,
        result=result,
        pdfs=request.pdfs,
        prompt=request.prompt,
        tokens_used=total_tokens(response),
    )


def create_pdf_upload_manager(
    credentials: CredentialStore,
    backend_factory: BackendFactory,
    poll_interval: float | None = None,
    max_attempts: int | None = None,
) -> RequestManager[PdfUploadRequest, ProcessedPdf]:
    invoke = functools.partial(upload_pdf, poll_interval=poll_interval, max_attempts=max_attempts)
    return RequestManager("pdf_upload", credentials, invoke, backend_factory)


def create_pdf_analysis_manager(
    credentials: CredentialStore, backend_factory: BackendFactory
) -> RequestManager[PdfAnalysisRequest, PdfAnalysisResponse]:
    return RequestManager("pdf_analysis", credentials, analyze_pdfs, backend_factory)
