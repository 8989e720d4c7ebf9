import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Union

import aiohttp
from pydantic import ValidationError
from yarl import URL

from realengine_client.exceptions import ProtocolError
from realengine_client.models import Envelope

HTTP_ACCEPTED = 202
HTTP_TOO_MANY_REQUESTS = 429
SERVER_ERROR = 500

LOCATION_HEADER = "Location"
RETRY_AFTER_HEADER = "X-Retry-After"
DEFAULT_RETRY_AFTER_MS = 1000


@dataclass(frozen=True)
class Retryable:
    status: int
    path: str


@dataclass(frozen=True)
class Pending:
    location: URL
    retry_after_ms: int
    status: int
    path: str


@dataclass(frozen=True)
class Decoded:
    envelope: Envelope
    status: int
    path: str


@dataclass(frozen=True)
class TransportFailure:
    cause: BaseException


Outcome = Union[Retryable, Pending, Decoded, TransportFailure]


class RequestExchanger:
    """Performs a single authenticated GET and classifies the response"""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        root_url: URL,
        token: str,
        default_retry_after_ms: int = DEFAULT_RETRY_AFTER_MS,
    ):
        self.session = session
        self.root_url = root_url
        self.default_retry_after_ms = default_retry_after_ms
        self._headers = {"Authorization": f"Bearer {token}"}

    async def exchange(self, url: URL, data_type: Any = Any) -> Outcome:
        """Sends one GET to ``url`` and returns the classified outcome"""
        try:
            async with self.session.get(url, headers=self._headers) as response:
                status = response.status
                path = response.url.raw_path

                if status == HTTP_TOO_MANY_REQUESTS or status >= SERVER_ERROR:
                    return Retryable(status=status, path=path)

                if status == HTTP_ACCEPTED:
                    location = self.resolve_location(
                        response.headers.get(LOCATION_HEADER)
                    )
                    if location is None:
                        raise ProtocolError("Location header is missing", status, path)
                    return Pending(
                        location=location,
                        retry_after_ms=self.parse_retry_after_ms(
                            response.headers.get(RETRY_AFTER_HEADER)
                        ),
                        status=status,
                        path=path,
                    )

                body = await response.read()
                return Decoded(
                    envelope=self._decode(body, data_type, status, path),
                    status=status,
                    path=path,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return TransportFailure(cause=e)

    def resolve_location(self, location: Optional[str]) -> Optional[URL]:
        """Resolves a Location header against the service root"""
        if not location:
            return None
        if location.startswith(("http://", "https://")):
            return URL(location)
        return self.root_url.join(URL(location))

    def parse_retry_after_ms(self, header: Optional[str]) -> int:
        """Converts X-Retry-After seconds to milliseconds, with a fallback"""
        if header is None:
            return self.default_retry_after_ms
        try:
            return max(0, int(float(header) * 1000))
        except (ValueError, OverflowError):
            return self.default_retry_after_ms

    @staticmethod
    def _decode(body: bytes, data_type: Any, status: int, path: str) -> Envelope:
        if not body:
            raise ProtocolError("The response body is empty", status, path)
        try:
            return Envelope[data_type].model_validate_json(body)
        except ValidationError as e:
            raise ProtocolError("The response body is malformed", status, path) from e
