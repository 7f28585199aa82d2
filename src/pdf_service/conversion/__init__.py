"""
Domain layer for URL-to-PDF conversion.
Provides gateways for fetching, converting and publishing documents, and a
service that runs them in sequence so front-ends (HTTP or others) share the
same workflow.
"""

from .errors import (
    CircuitOpen,
    ConversionError,
    ConversionFailed,
    DownloadFailed,
    MalformedRequest,
    SourceNotFound,
    StorageFailure,
)
from .interfaces import (
    ConversionRequest,
    ConverterGateway,
    FetcherGateway,
    PublisherGateway,
    RequestState,
    SignedBlobReference,
)
from .resilience import CircuitBreaker, CircuitBreakerConfig, CircuitState
from .service import ConversionService
