"""Compose capability attempts across API families in a fixed priority order.

A ``NotFoundError`` from one source means "try the next one". Any other
failure stops the chain and propagates unchanged. When every source misses,
one aggregate ``NotFoundError`` is raised.

Fixed orders:

- item lookup: ``inventory_api`` (modern Inventory API, by SKU) first, since it
  is authoritative for SKU-based listings. ``trading_api`` (legacy GetItem, by
  listing id, else by SKU) second, covering listings created before SKU-based
  inventory existed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from app.models.records import ItemRecord
from app.services.ebay_capabilities import ItemLookup, LegacyItemLookup
from app.services.ebay_errors import MissingIdentifier, NotFoundError
from app.utils.logger import logger


T = TypeVar("T")

INVENTORY_API = "inventory_api"
TRADING_API = "trading_api"


@dataclass
class FallbackAttempt(Generic[T]):
    location: str
    call: Callable[[], Awaitable[T]]


@dataclass
class Resolution(Generic[T]):
    record: T
    location: str
    tried: List[str] = field(default_factory=list)


async def resolve(capability: str, attempts: Sequence[FallbackAttempt[T]]) -> Resolution[T]:
    if not attempts:
        raise ValueError(f"{capability}: no sources to try")

    tried: List[str] = []
    misses: Dict[str, str] = {}
    for attempt in attempts:
        tried.append(attempt.location)
        try:
            record = await attempt.call()
        except NotFoundError as exc:
            logger.info("[fallback] %s miss location=%s", capability, attempt.location)
            misses[attempt.location] = exc.message
            continue
        logger.info("[fallback] %s hit location=%s tried=%s", capability, attempt.location, tried)
        return Resolution(record=record, location=attempt.location, tried=tried)

    raise NotFoundError(
        f"{capability}: not found in {', '.join(tried)}",
        details={"attempts": misses},
    )


class FallbackResolver:
    def __init__(self, inventory: ItemLookup, listings: LegacyItemLookup):
        self._inventory = inventory
        self._listings = listings

    async def find_item(self, *, sku: Optional[str] = None, item_id: Optional[str] = None) -> Resolution[ItemRecord]:
        if not sku and not item_id:
            raise MissingIdentifier("Either sku or item_id is required")

        attempts: List[FallbackAttempt[ItemRecord]] = []
        if sku:
            attempts.append(FallbackAttempt(INVENTORY_API, lambda: self._inventory.find_item_by_sku(sku)))
        if item_id:
            attempts.append(FallbackAttempt(TRADING_API, lambda: self._listings.find_item_by_id(item_id)))
        else:
            attempts.append(FallbackAttempt(TRADING_API, lambda: self._listings.find_item_by_sku(sku)))
        return await resolve("find_item", attempts)
