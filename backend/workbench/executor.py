"""Execute a stored request and record the attempt in history.

Transport failures (connection refused, DNS, TLS, timeouts) are recorded on
the history row as an error descriptor and never raised. Storage failures
while writing that row are raised to the caller.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import repository
from .config import Settings
from .errors import ErrorCode, NotFoundError, ValidationError
from .materializer import MaterializedRequest, RequestTemplate, materialize
from .models import HistoryItem, RequestItem, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    status_code: Optional[int] = None
    headers: Optional[Dict[str, str]] = None
    body: Optional[str] = None
    error: Optional[dict] = None
    duration_ms: int = 0


def template_of(item: RequestItem) -> RequestTemplate:
    return RequestTemplate(
        method=item.method,
        url=item.url,
        headers=item.header_map,
        body=item.body,
        query_params={k: str(v) for k, v in item.query_map.items()},
    )


def resolve_variables(db: Session, environment_id: Optional[int], user_id: int) -> Dict[str, str]:
    if environment_id is None:
        return {}
    env = repository.get_environment_for_user(db, environment_id, user_id)
    if env is None:
        raise ValidationError(
            ErrorCode.ENVIRONMENT_NOT_ACCESSIBLE,
            "Environment not found or not accessible",
        )
    return env.variable_map


async def dispatch(
    call: MaterializedRequest,
    timeout_s: float,
    follow_redirects: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Outcome:
    start = time.perf_counter()
    try:
        async with httpx.AsyncClient(
            timeout=timeout_s,
            follow_redirects=follow_redirects,
            transport=transport,
        ) as client:
            start = time.perf_counter()
            # the client timeout is per phase, this bounds the whole call
            r = await asyncio.wait_for(
                client.request(
                    method=call.method,
                    url=call.url,
                    headers=call.headers,
                    content=call.body,
                ),
                timeout_s,
            )
    except asyncio.TimeoutError as exc:
        duration_ms = int((time.perf_counter() - start) * 1000)
        return Outcome(
            error={
                "message": f"Request timed out after {timeout_s:g}s",
                "code": type(exc).__name__,
                "type": ErrorCode.NETWORK_ERROR.value,
            },
            duration_ms=duration_ms,
        )
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
        # ValueError covers header values httpx cannot encode
        duration_ms = int((time.perf_counter() - start) * 1000)
        return Outcome(
            error={
                "message": str(exc) or type(exc).__name__,
                "code": type(exc).__name__,
                "type": ErrorCode.NETWORK_ERROR.value,
            },
            duration_ms=duration_ms,
        )

    duration_ms = int((time.perf_counter() - start) * 1000)
    return Outcome(
        status_code=r.status_code,
        headers=dict(r.headers),
        body=r.text,
        duration_ms=duration_ms,
    )


async def execute(
    db: Session,
    request_id: int,
    user_id: int,
    environment_id: Optional[int] = None,
    *,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> HistoryItem:
    # membership join doubles as the viewer-level access check
    item = repository.get_request_for_user(db, request_id, user_id)
    if item is None:
        raise NotFoundError(ErrorCode.REQUEST_NOT_FOUND, "Request not found or access denied")

    vars_ = resolve_variables(db, environment_id, user_id)
    call = materialize(template_of(item), vars_)

    outcome = await dispatch(
        call,
        timeout_s=settings.EXECUTION_TIMEOUT_MS / 1000,
        follow_redirects=settings.FOLLOW_REDIRECTS,
        transport=transport,
    )

    if outcome.error:
        logger.warning(
            "request execution failed: %s",
            outcome.error["message"],
            extra={"request_id": request_id, "user_id": user_id, "error_code": outcome.error["code"],
                   "duration_ms": outcome.duration_ms},
        )

    record = HistoryItem(
        request_id=item.id,
        user_id=user_id,
        status_code=outcome.status_code,
        response_headers=json.dumps(outcome.headers) if outcome.headers is not None else None,
        response_body=outcome.body,
        duration_ms=outcome.duration_ms,
        error_message=json.dumps(outcome.error) if outcome.error else None,
        executed_at=utcnow(),
    )
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("failed to persist execution history", extra={"request_id": request_id})
        raise

    logger.info(
        "executed request %s: %s -> %s",
        request_id,
        call.method,
        outcome.status_code,
        extra={"request_id": request_id, "history_id": record.id, "status_code": outcome.status_code,
               "duration_ms": outcome.duration_ms},
    )
    return record
