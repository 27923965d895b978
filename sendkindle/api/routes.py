from __future__ import annotations

import base64
from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response

from sendkindle.dependencies import get_conversion_service
from sendkindle.models.process_contracts import (
    ProcessErrorResponse,
    ProcessRequest,
    ProcessResponse,
    SummaryPayload,
)
from sendkindle.services.conversion_service import (
    ConversionError,
    ConversionResult,
    ConversionService,
)
from sendkindle.services.document_builder import MEDIA_TYPE
from sendkindle.services.url_canonicalizer import InvalidUrlError

router = APIRouter(prefix="/api")

READY_MESSAGE = "EPUB ready to download."


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ProcessErrorResponse(message=message).model_dump(),
    )


async def _run_conversion(
    service: ConversionService,
    url: str,
) -> ConversionResult | JSONResponse:
    try:
        return await service.convert(url)
    except InvalidUrlError as exc:
        return _error_response(400, str(exc))
    except ConversionError as exc:
        return _error_response(500, str(exc) or "Processing failed.")


@router.post(
    "/process",
    response_model=ProcessResponse,
    responses={400: {"model": ProcessErrorResponse}, 500: {"model": ProcessErrorResponse}},
    tags=["conversion"],
    operation_id="process_url",
)
async def process_url(
    request: ProcessRequest,
    service: Annotated[ConversionService, Depends(get_conversion_service)],
) -> ProcessResponse | JSONResponse:
    outcome = await _run_conversion(service, request.url)
    if isinstance(outcome, JSONResponse):
        return outcome

    artifact = outcome.artifact
    summary = artifact.summary
    return ProcessResponse(
        message=READY_MESSAGE,
        job_id=outcome.job_id,
        title=artifact.normalized.title,
        author=artifact.normalized.author,
        source_url=artifact.normalized.source_url,
        filename=artifact.filename,
        cache_hit=outcome.cache_hit,
        summary_used=outcome.summary_used,
        summary=(
            SummaryPayload(
                heading=summary.heading,
                summary=summary.summary,
                bullets=list(summary.bullets),
                language=summary.language,
            )
            if summary is not None
            else None
        ),
        epub_base64=base64.b64encode(artifact.buffer).decode("ascii"),
    )


@router.get(
    "/download",
    response_class=Response,
    responses={
        200: {"content": {MEDIA_TYPE: {}}},
        400: {"model": ProcessErrorResponse},
        500: {"model": ProcessErrorResponse},
    },
    tags=["conversion"],
    operation_id="download_document",
)
async def download_document(
    url: Annotated[str, Query(max_length=2048)],
    service: Annotated[ConversionService, Depends(get_conversion_service)],
) -> Response:
    outcome = await _run_conversion(service, url)
    if isinstance(outcome, JSONResponse):
        return outcome

    artifact = outcome.artifact
    return Response(
        content=artifact.buffer,
        media_type=MEDIA_TYPE,
        headers={
            "Content-Disposition": (
                f"attachment; filename=\"{artifact.filename}\"; "
                f"filename*=UTF-8''{quote(artifact.filename)}"
            ),
            "X-Conversion-Job-ID": outcome.job_id,
        },
    )
