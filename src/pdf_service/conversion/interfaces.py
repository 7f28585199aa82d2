import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import MalformedRequest


class FetcherGateway(Protocol):
    async def fetch(self, url: str) -> Path:
        """Download `url` into a new temporary file and return its path."""


class ConverterGateway(Protocol):
    async def convert(self, source: Path) -> Path:
        """Convert `source` to PDF next to it and return the PDF path."""


class PublisherGateway(Protocol):
    async def publish(self, pdf_path: Path) -> "SignedBlobReference":
        ...


class RequestState(str, Enum):
    RECEIVED = "received"
    FETCHING = "fetching"
    CONVERTING = "converting"
    PUBLISHING = "publishing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ConversionRequest:
    url: str

    @classmethod
    def from_body(cls, raw: bytes) -> "ConversionRequest":
        """Parse a JSON body of the form {"url": "<string>"}."""
        try:
            payload = json.loads(raw or b"")
        except (ValueError, UnicodeDecodeError):
            raise MalformedRequest("Request body must be valid JSON")
        if not isinstance(payload, dict):
            raise MalformedRequest("Request body must be a JSON object")
        url = payload.get("url")
        if not isinstance(url, str) or not url.strip():
            raise MalformedRequest("Request body must contain a 'url' string")
        return cls(url=url.strip())


@dataclass(frozen=True)
class SignedBlobReference:
    blob_uri: str
    token: str
    expiry: datetime

    @property
    def url(self) -> str:
        return f"{self.blob_uri}?{self.token}"
