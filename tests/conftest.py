"""Shared test fixtures for the bananas shipper."""

from __future__ import annotations

import asyncio

import pytest

from bananas.config import BananasConfig
from bananas.records import Record
from bananas.sender import TransportSender


class RecordingSender(TransportSender):
    """Sender that keeps every batch instead of shipping it."""

    def __init__(self, accept: bool = True, delay: float = 0.0):
        self.accept = accept
        self.delay = delay
        self.batches: list[list[Record]] = []

    async def send(self, records: list[Record]) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.batches.append(list(records))
        return self.accept

    @property
    def records(self) -> list[Record]:
        return [record for batch in self.batches for record in batch]

    @property
    def tags(self) -> list[tuple[str, ...]]:
        return [record.tags for record in self.records]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def config() -> BananasConfig:
    """Fast-flushing test configuration."""
    return BananasConfig(token="abcdefg", interval_msec=50)
