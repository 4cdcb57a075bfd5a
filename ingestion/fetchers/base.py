"""
Base fetcher interface for all producer adapters.

A fetcher turns one external feed into a list of inbound payload dicts in
the shape the SignalAggregator ingests. Network and parse failures are the
fetcher's problem: they are logged and an empty list is returned, so a dead
feed never takes a refresh cycle down with it.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Optional
import logging

import httpx

logger = logging.getLogger(__name__)

Payload = dict[str, Any]


class BaseFetcher(ABC):
    """Abstract base for all producer fetchers."""

    provider_name: str = "base"
    source_id: str = "base"          # data freshness source id
    signal_kind: str = ""            # SignalKind value of the payloads produced

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout
        # Injected in tests (httpx.MockTransport)
        self._transport = transport
        # Set by fetch() when the last attempt failed, cleared on success
        self.last_error: Optional[str] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    @abstractmethod
    async def fetch(self) -> list[Payload]:
        """Fetch the current batch. Returns [] on any failure."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the feed is reachable and responding."""
        ...
