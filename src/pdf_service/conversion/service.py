import uuid
from pathlib import Path

import structlog

from .adapters import remove_quietly
from .errors import ConversionError
from .interfaces import (
    ConversionRequest,
    ConverterGateway,
    FetcherGateway,
    PublisherGateway,
    RequestState,
    SignedBlobReference,
)

logger = structlog.get_logger(__name__)


class ConversionService:
    """Core domain service running one conversion request end to end.

    Fetching -> Converting -> Publishing, with an early exit to FAILED from
    any stage. The service owns the request's temporary files and removes
    them whatever the outcome. There are no retries at this level.
    """

    def __init__(
        self,
        fetcher: FetcherGateway,
        converter: ConverterGateway,
        publisher: PublisherGateway,
    ) -> None:
        self._fetcher = fetcher
        self._converter = converter
        self._publisher = publisher

    async def convert(self, request: ConversionRequest, *, request_id: str | None = None) -> SignedBlobReference:
        log = logger.bind(request_id=request_id or uuid.uuid4().hex[:12])
        state = RequestState.RECEIVED
        log.info("conversion received", state=state.value, url=request.url)

        source: Path | None = None
        pdf: Path | None = None
        try:
            state = RequestState.FETCHING
            log.info("stage", state=state.value)
            source = await self._fetcher.fetch(request.url)

            state = RequestState.CONVERTING
            log.info("stage", state=state.value)
            pdf = await self._converter.convert(source)

            state = RequestState.PUBLISHING
            log.info("stage", state=state.value)
            ref = await self._publisher.publish(pdf)
        except ConversionError as e:
            log.warning(
                "conversion failed",
                state=RequestState.FAILED.value,
                failed_stage=state.value,
                error_type=type(e).__name__,
                error=e.message,
            )
            raise
        finally:
            if source is not None:
                # partial output of a failed or cancelled conversion
                remove_quietly(source.with_suffix(".pdf"))
            remove_quietly(pdf)
            remove_quietly(source)

        log.info("conversion completed", state=RequestState.COMPLETED.value, blob=ref.blob_uri)
        return ref
