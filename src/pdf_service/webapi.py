import asyncio
import os
import tempfile
import uuid
from datetime import timedelta

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import PlainTextResponse

from pdf_service import __version__
from pdf_service.conversion import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpen,
    ConversionError,
    ConversionRequest,
    ConversionService,
)
from pdf_service.conversion.adapters import AzureBlobPublisher, HttpFetcher, LibreOfficeConverter
from pdf_service.logging_config import configure_logging

logger = structlog.get_logger(__name__)

app = FastAPI(
    title="PDF Conversion Service",
    version=os.getenv("PDF_SERVICE_VERSION", __version__),
    description=(
        "Downloads a document from a URL, converts it to PDF with a headless "
        "office suite and returns a time-limited signed download link."
    ),
)

# Global configuration defaults
CONNECTION_STRING = os.getenv("AZURE_STORAGE_CONNECTION_STRING") or os.getenv("AzureWebJobsStorage")
LIBREOFFICE_BIN = os.getenv("LIBREOFFICE_BIN", "/usr/bin/libreoffice")
CONVERSION_TIMEOUT_SEC = float(os.getenv("CONVERSION_TIMEOUT_SEC", "300"))
MAX_CONCURRENT_CONVERSIONS = int(os.getenv("MAX_CONCURRENT_CONVERSIONS", "4"))
DOWNLOAD_TIMEOUT_SEC = float(os.getenv("DOWNLOAD_TIMEOUT_SEC", "60"))
MAX_DOWNLOAD_MB = int(os.getenv("MAX_DOWNLOAD_MB", "300"))
BREAKER_FAILURE_THRESHOLD = int(os.getenv("BREAKER_FAILURE_THRESHOLD", "5"))
BREAKER_RESET_SEC = float(os.getenv("BREAKER_RESET_SEC", "15"))
SAS_VALIDITY_HOURS = float(os.getenv("SAS_VALIDITY_HOURS", "24"))
TEMP_DIR = os.getenv("TEMP_DIR") or tempfile.gettempdir()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")
DISCONNECT_POLL_SEC = 1.0

SERVICE: ConversionService | None = None
BREAKER: CircuitBreaker | None = None


def build_service(breaker: CircuitBreaker) -> ConversionService:
    fetcher = HttpFetcher(
        breaker,
        temp_dir=TEMP_DIR,
        timeout=DOWNLOAD_TIMEOUT_SEC,
        max_bytes=MAX_DOWNLOAD_MB * 1024 * 1024,
    )
    converter = LibreOfficeConverter(
        LIBREOFFICE_BIN,
        timeout=CONVERSION_TIMEOUT_SEC,
        max_concurrent=MAX_CONCURRENT_CONVERSIONS,
    )
    publisher = AzureBlobPublisher(
        CONNECTION_STRING,
        validity=timedelta(hours=SAS_VALIDITY_HOURS),
    )
    return ConversionService(fetcher=fetcher, converter=converter, publisher=publisher)


@app.on_event("startup")
async def _startup() -> None:
    configure_logging(LOG_LEVEL, LOG_FORMAT)
    global SERVICE, BREAKER
    BREAKER = CircuitBreaker(
        "source",
        CircuitBreakerConfig(failure_threshold=BREAKER_FAILURE_THRESHOLD, reset_timeout=BREAKER_RESET_SEC),
    )
    SERVICE = build_service(BREAKER)
    if not CONNECTION_STRING:
        logger.warning("blob storage connection string is not configured")
    logger.info("service started", converter=LIBREOFFICE_BIN, temp_dir=TEMP_DIR)


@app.exception_handler(ConversionError)
async def _conversion_error_handler(request: Request, exc: ConversionError) -> PlainTextResponse:
    headers = {}
    if isinstance(exc, CircuitOpen):
        headers["Retry-After"] = str(max(1, int(exc.retry_after + 0.999)))
    return PlainTextResponse(exc.message, status_code=exc.status_code, headers=headers)


@app.exception_handler(Exception)
async def _unexpected_error_handler(request: Request, exc: Exception) -> PlainTextResponse:
    logger.error("unexpected error", error=str(exc), error_type=type(exc).__name__, exc_info=exc)
    return PlainTextResponse("Internal server error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.get("/health")
def health() -> dict[str, object]:
    """Basic health check endpoint, including the source circuit state."""
    body: dict[str, object] = {"status": "ok"}
    if BREAKER is not None:
        body["circuit"] = BREAKER.snapshot()
    return body


async def _run_until_disconnect(request: Request, coro):
    """Await `coro`, cancelling it if the client goes away first.

    Returns None when the client disconnected.
    """
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SEC)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.warning("client disconnected, cancelling conversion")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                return None
    finally:
        if not task.done():
            task.cancel()


@app.post("/", response_class=PlainTextResponse)
async def convert(request: Request) -> PlainTextResponse:
    """Convert the document at the posted URL to PDF.

    Accepts a JSON body {"url": "<string>"}. Returns 200 with the signed
    download link as plain text; errors are plain text as well.
    """
    global SERVICE
    assert SERVICE is not None

    conversion = ConversionRequest.from_body(await request.body())
    request_id = uuid.uuid4().hex[:12]
    ref = await _run_until_disconnect(request, SERVICE.convert(conversion, request_id=request_id))
    if ref is None:
        return PlainTextResponse("Client closed request", status_code=499)
    return PlainTextResponse(ref.url, headers={"X-Request-ID": request_id})


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    reload = os.getenv("RELOAD", "false").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("pdf_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
