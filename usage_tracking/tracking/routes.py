"""Usage tracking callback route."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from usage_tracking.lib.logger import get_logger
from usage_tracking.lib.metrics import UsageRegistry
from usage_tracking.lib.request_id import new_request_id
from usage_tracking.tracking.schemas import TrackRequest

router = APIRouter()
logger = get_logger(__name__)

# Every method reaches the handler so rejected calls are logged like accepted ones.
_ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def get_registry(request: Request) -> UsageRegistry:
    registry: UsageRegistry | None = getattr(request.app.state, "registry", None)
    if registry is None:
        raise RuntimeError("Usage registry not configured on application state")
    return registry


@router.api_route("/track", methods=_ROUTED_METHODS)
async def track(request: Request, registry: UsageRegistry = Depends(get_registry)) -> Response:
    """Validate one callback payload and count it."""

    req_id = new_request_id()

    if request.method != "POST":
        logger.warning("invalid method", extra={"req_id": req_id, "method": request.method})
        return PlainTextResponse("POST only", status_code=405, headers={"Allow": "POST"})

    body = await request.body()
    try:
        payload = TrackRequest.model_validate_json(body)
    except ValidationError as exc:
        logger.warning(
            "decode error",
            extra={"req_id": req_id, "err": exc.errors(include_url=False, include_context=False)},
        )
        return PlainTextResponse("invalid JSON", status_code=400)

    if not payload.user:
        logger.warning("missing user", extra={"req_id": req_id})
        return PlainTextResponse("missing user", status_code=422)

    key = payload.label_key()
    registry.increment(key)
    logger.info(
        "counter incremented",
        extra={"req_id": req_id, "user": key.user, "groups": key.groups, "path": key.path},
    )
    logger.debug("payload dump", extra={"req_id": req_id, "payload": payload.model_dump()})

    return Response(status_code=202)
