import asyncio
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import urlparse

import requests
import structlog
from azure.core.exceptions import AzureError, ResourceExistsError
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, ContentSettings, generate_blob_sas

from .errors import ConversionFailed, DownloadFailed, SourceNotFound, StorageFailure
from .interfaces import ConverterGateway, FetcherGateway, PublisherGateway, SignedBlobReference
from .resilience import CircuitBreaker

logger = structlog.get_logger(__name__)

CHUNK = 1024 * 1024


def remove_quietly(path: Path | str | None) -> None:
    """Best-effort delete; failures are logged and swallowed."""
    if path is None:
        return
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("temp file cleanup failed", path=str(path), error=str(e))


def _is_transient(status_code: int) -> bool:
    return status_code >= 500 or status_code == 408


def _source_suffix(url: str) -> str:
    # Keep the document's extension so the converter can pick a filter;
    # never ".pdf", which would collide with the conversion output.
    suffix = Path(urlparse(url).path).suffix.lower()
    if not suffix or suffix == ".pdf" or len(suffix) > 8 or not suffix[1:].isalnum():
        return ".tmp"
    return suffix


class HttpFetcher(FetcherGateway):
    """Downloads source documents through a shared circuit breaker."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        session: requests.Session | None = None,
        temp_dir: str | None = None,
        timeout: float = 60.0,
        max_bytes: int | None = None,
    ) -> None:
        self._breaker = breaker
        self._session = session or requests.Session()
        self._temp_dir = temp_dir
        self._timeout = timeout
        self._max_bytes = max_bytes

    async def fetch(self, url: str) -> Path:
        download = asyncio.ensure_future(asyncio.to_thread(self._download, url))
        try:
            return await asyncio.shield(download)
        except asyncio.CancelledError:
            # the worker thread cannot be interrupted; drop its file once it finishes
            download.add_done_callback(_discard_download)
            raise

    def _download(self, url: str) -> Path:
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise DownloadFailed(None, f"unsupported URL {url!r}")

        fd, name = tempfile.mkstemp(prefix="src-", suffix=_source_suffix(url), dir=self._temp_dir)
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as f_out:
                self._get_into(url, f_out)
        except BaseException:
            remove_quietly(path)
            raise
        return path

    def _get_into(self, url: str, f_out) -> None:
        self._breaker.before_call()
        try:
            response = self._session.get(url, stream=True, timeout=self._timeout)
        except requests.RequestException as e:
            self._breaker.record_failure()
            logger.warning("source request failed", url=url, error=str(e))
            raise DownloadFailed(None, str(e)) from e

        with response:
            status = response.status_code
            if not response.ok:
                if _is_transient(status):
                    self._breaker.record_failure()
                else:
                    self._breaker.record_success()
                if status == 404:
                    raise SourceNotFound()
                logger.warning("source returned error status", url=url, status=status, reason=response.reason)
                raise DownloadFailed(status, response.reason or "")

            try:
                size = self._copy_body(response, f_out)
            except requests.RequestException as e:
                self._breaker.record_failure()
                logger.warning("source transfer interrupted", url=url, error=str(e))
                raise DownloadFailed(None, f"transfer interrupted: {e}") from e
            except BaseException:
                # not a transient fault of the source
                self._breaker.record_success()
                raise
            self._breaker.record_success()
        logger.info("source downloaded", url=url, size_bytes=size)

    def _too_large(self) -> DownloadFailed:
        return DownloadFailed(None, f"payload too large (over {self._max_bytes / CHUNK:g} MB)")

    def _copy_body(self, response: requests.Response, f_out) -> int:
        declared = response.headers.get("Content-Length")
        if self._max_bytes and declared and declared.isdigit() and int(declared) > self._max_bytes:
            raise self._too_large()

        size = 0
        for chunk in response.iter_content(chunk_size=CHUNK):
            if not chunk:
                continue
            size += len(chunk)
            if self._max_bytes and size > self._max_bytes:
                raise self._too_large()
            f_out.write(chunk)
        f_out.flush()
        return size


def _discard_download(download: asyncio.Future) -> None:
    if download.cancelled() or download.exception() is not None:
        return
    remove_quietly(download.result())


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()


class LibreOfficeConverter(ConverterGateway):
    """Runs the office suite headless to convert a file to PDF in place.

    The suite writes `<stem>.pdf` into its working directory, so the process
    is started from the source file's own directory.
    """

    ARGS = ("--norestore", "--nofirststartwizard", "--headless", "--convert-to", "pdf")

    def __init__(self, binary: str, *, timeout: float = 300.0, max_concurrent: int = 4) -> None:
        self._binary = binary
        self._timeout = timeout
        self._slots = asyncio.Semaphore(max_concurrent)

    async def convert(self, source: Path) -> Path:
        source = Path(source)
        target = source.with_suffix(".pdf")
        async with self._slots:
            # one LibreOffice user profile per run
            with tempfile.TemporaryDirectory(prefix="lo-home-", ignore_cleanup_errors=True) as home:
                await self._run(source, home)
        if not target.exists():
            raise ConversionFailed()
        return target

    async def _run(self, source: Path, home: str) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *self.ARGS,
                str(source),
                cwd=str(source.parent),
                env={**os.environ, "HOME": home},
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("converter could not start", binary=self._binary, error=str(e))
            raise ConversionFailed(f"cannot start {self._binary}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            logger.error("converter timed out", pid=proc.pid, timeout=self._timeout)
            raise ConversionFailed(f"timed out after {self._timeout:g}s")
        except asyncio.CancelledError:
            await _kill(proc)
            logger.warning("conversion cancelled", pid=proc.pid)
            raise

        if proc.returncode != 0:
            logger.warning(
                "converter exited with error",
                returncode=proc.returncode,
                stderr=(stderr or b"").decode("utf-8", "replace")[-2000:],
            )


class AzureBlobPublisher(PublisherGateway):
    """Uploads PDFs to a blob container and signs a read-only link."""

    CONTAINER = "converted-files"

    def __init__(
        self,
        connection_string: str | None,
        *,
        container: str = CONTAINER,
        validity: timedelta = timedelta(hours=24),
        start_skew: timedelta = timedelta(minutes=5),
        service_client: BlobServiceClient | None = None,
    ) -> None:
        self._connection_string = connection_string
        self._container = container
        self._validity = validity
        self._start_skew = start_skew
        self._service = service_client
        self._container_ready = False

    async def publish(self, pdf_path: Path) -> SignedBlobReference:
        return await asyncio.to_thread(self._publish, Path(pdf_path))

    def _client(self) -> BlobServiceClient:
        if self._service is None:
            if not self._connection_string:
                raise StorageFailure("blob storage connection string is not configured")
            self._service = BlobServiceClient.from_connection_string(self._connection_string)
        return self._service

    def _ensure_container(self, container) -> None:
        if self._container_ready:
            return
        try:
            container.create_container(public_access="blob")
            logger.info("blob container created", container=self._container)
        except ResourceExistsError:
            pass
        self._container_ready = True

    def _publish(self, pdf_path: Path) -> SignedBlobReference:
        try:
            service = self._client()
            account_key = getattr(service.credential, "account_key", None)
            if not account_key:
                raise StorageFailure("connection string carries no account key for signing")

            container = service.get_container_client(self._container)
            self._ensure_container(container)

            blob_name = f"{uuid.uuid4()}.pdf"
            blob = container.get_blob_client(blob_name)
            with pdf_path.open("rb") as data:
                blob.upload_blob(data, content_settings=ContentSettings(content_type="application/pdf"))

            now = datetime.now(timezone.utc)
            expiry = now + self._validity
            token = generate_blob_sas(
                account_name=service.account_name,
                container_name=self._container,
                blob_name=blob_name,
                account_key=account_key,
                permission=BlobSasPermissions(read=True),
                start=now - self._start_skew,
                expiry=expiry,
            )
        except (AzureError, ValueError) as e:
            logger.error("blob publish failed", container=self._container, error=str(e))
            raise StorageFailure(str(e)) from e

        logger.info("blob published", container=self._container, blob=blob_name, expiry=expiry.isoformat())
        return SignedBlobReference(blob_uri=blob.url, token=token, expiry=expiry)
