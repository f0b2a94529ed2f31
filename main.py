from dotenv import load_dotenv
load_dotenv()

from flowfee.common.logger import configure_logging
configure_logging()
from fastapi import FastAPI, Request
from flowfee.config.config import settings
from starlette.status import (
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_CONTENT,
    HTTP_502_BAD_GATEWAY,
)
from flowfee.api import fee_calculations
from flowfee.data import dbinit
from contextlib import asynccontextmanager
import structlog

from flowfee.common.middleware import log_requests
from fastapi.responses import JSONResponse
from flowfee.common.exception import (
    FeeValidationError,
    IntegrityException,
    RecordNotFoundException,
    TaxEngineException,
)


logger = structlog.get_logger()
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application is starting up...")
    await dbinit.init_db()
    yield
    await dbinit.engine.dispose()
    logger.info("Application shut down")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan
)

app.middleware("http")(log_requests)

app.include_router(
    fee_calculations.router,
    prefix=f"{settings.API_V1_PREFIX}/fee-calculations",
    tags=["fee-calculations"],
)


def _error_body(request: Request, status_code: int, error: str, exc) -> dict:
    return {
        "status_code": status_code,
        "error": error,
        "message": exc.message,
        "context": exc.context,
        "path": request.url.path,
    }


@app.exception_handler(RecordNotFoundException)
async def record_not_found_handler(request: Request, exc: RecordNotFoundException):
    return JSONResponse(
        status_code=HTTP_404_NOT_FOUND,
        content=_error_body(request, HTTP_404_NOT_FOUND, "NotFound", exc),
    )


@app.exception_handler(FeeValidationError)
async def fee_validation_handler(request: Request, exc: FeeValidationError):
    logger.warning(f"Fee validation failed: {exc.message}")
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE_CONTENT,
        content=_error_body(request, HTTP_422_UNPROCESSABLE_CONTENT, "FeeValidationError", exc),
    )


@app.exception_handler(IntegrityException)
async def integrity_handler(request: Request, exc: IntegrityException):
    return JSONResponse(
        status_code=HTTP_409_CONFLICT,
        content=_error_body(request, HTTP_409_CONFLICT, "IntegrityError", exc),
    )


@app.exception_handler(TaxEngineException)
async def tax_engine_handler(request: Request, exc: TaxEngineException):
    return JSONResponse(
        status_code=HTTP_502_BAD_GATEWAY,
        content=_error_body(request, HTTP_502_BAD_GATEWAY, "TaxEngineUnavailable", exc),
    )


@app.get("/health")
def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", reload=True)
