from fastapi import Request
import uuid
import structlog

logger = structlog.get_logger()

async def log_requests(request: Request, call_next):
    # reuse the caller's id when given
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        path=request.url.path,
        method=request.method,
    )

    logger.info("Request received")
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    logger.info(f"Request completed - status_code = {response.status_code}")

    return response
