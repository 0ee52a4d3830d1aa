"""
Analytics ingestion endpoint.

Receives event batches from the coding assistant extension and hands them to
the batch coordinator.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pairlog.api.auth import require_ingest_access
from pairlog.api.schemas import IngestResponse
from pairlog.db.connection import get_db
from pairlog.exceptions import BatchIngestionError, BatchRejectedError
from pairlog.pipeline.coordinator import BatchCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analytics"])


def _extract_events(body: Any) -> Any:
    if not isinstance(body, dict):
        raise BatchRejectedError("Request body must be a JSON object")
    if "events" not in body:
        raise BatchRejectedError("Missing 'events' field")
    return body["events"]


@router.post(
    "/api/analytics",
    response_model=IngestResponse,
    responses={
        400: {"description": "Malformed batch"},
        422: {"model": IngestResponse, "description": "Batch rolled back"},
        500: {"description": "Storage failure"},
    },
    dependencies=[Depends(require_ingest_access)],
)
async def ingest_analytics(
    request: Request,
    session: Session = Depends(get_db),
) -> Any:
    """
    Ingest a batch of analytics events.

    Returns 200 when the batch was committed (possibly with per-event
    errors), 422 when too many events failed and the batch was rolled back,
    400 for a malformed body and 500 for storage failures.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body is not valid JSON",
        )

    coordinator = BatchCoordinator(session, source_type="api")
    try:
        result = coordinator.ingest(_extract_events(body))
    except BatchRejectedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BatchIngestionError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Ingestion failed: {e}",
        )

    response = IngestResponse.from_result(result)
    if result.rolled_back:
        # Returned (not raised) so get_db still commits the batch audit row
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(mode="json", exclude_none=True),
        )
    return JSONResponse(content=response.model_dump(mode="json", exclude_none=True))
