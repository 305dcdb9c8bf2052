"""Transport senders - deliver record batches to the ingestion endpoint."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from .config import BananasConfig
from .records import Record
from .serializer import encode_batch


logger = logging.getLogger(__name__)


class TransportSender(ABC):
    """
    Abstract base class for transport senders.

    A sender receives one drained batch and makes a single delivery
    attempt. Delivery is best effort: failures are reported through the
    return value, never raised, and never retried.
    """

    @abstractmethod
    async def send(self, records: list[Record]) -> bool:
        """Send a batch. Returns True if the endpoint accepted it."""
        ...


@dataclass
class HttpSender(TransportSender):
    """
    Sender that POSTs newline-delimited JSON to the Loggly bulk endpoint.

    A fresh ``httpx.AsyncClient`` is opened per batch so the sender works
    on whichever event loop the flush runs on (including the short-lived
    loop used on the fatal-exception path).

    Config:
        uri: bulk endpoint, ``https://<host>/bulk/<token>``
        tags: global tags; when set, sent comma-joined as ``x-loggly-tag``
        transport: optional httpx transport (e.g. ``httpx.MockTransport``)
        timeout: httpx timeout; ``None`` leaves the send unbounded
    """
    uri: str
    tags: list[str] | None = None
    transport: httpx.AsyncBaseTransport | None = None
    timeout: Any = None

    @classmethod
    def from_config(cls, config: BananasConfig, **kwargs) -> HttpSender:
        return cls(uri=config.uri, tags=config.tags, **kwargs)

    @property
    def headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.tags is not None:
            headers["x-loggly-tag"] = ",".join(self.tags)
        return headers

    async def send(self, records: list[Record]) -> bool:
        if not records:
            return True

        payload = encode_batch(records)

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.post(self.uri, content=payload, headers=self.headers)

            if response.is_success:
                return True

            logger.debug(f"Ingestion endpoint rejected batch of {len(records)}: {response.status_code}")
            return False

        except httpx.HTTPError as e:
            logger.debug(f"Dropping batch of {len(records)} after transport error: {e}")
            return False
