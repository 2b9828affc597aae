import pytest

from app.models.records import ItemRecord, SourceApi
from app.services.ebay_errors import MissingIdentifier, NotFoundError, TransientError, UnauthorizedError
from app.services.fallback_resolver import (
    INVENTORY_API,
    TRADING_API,
    FallbackAttempt,
    FallbackResolver,
    resolve,
)


class StubLookup:
    """Capability stub: answers from a dict, raises NotFoundError on a miss."""

    def __init__(self, source_api, by_sku=None, by_id=None, error=None):
        self.source_api = source_api
        self.by_sku = by_sku or {}
        self.by_id = by_id or {}
        self.error = error
        self.calls = []

    async def find_item_by_sku(self, sku):
        self.calls.append(("sku", sku))
        if self.error:
            raise self.error
        if sku not in self.by_sku:
            raise NotFoundError(f"no sku {sku}")
        return self.by_sku[sku]

    async def find_item_by_id(self, item_id):
        self.calls.append(("id", item_id))
        if self.error:
            raise self.error
        if item_id not in self.by_id:
            raise NotFoundError(f"no item {item_id}")
        return self.by_id[item_id]


def _modern_item(sku="SKU-1"):
    return ItemRecord(id=sku, source_api=SourceApi.modern, sku=sku, title="Modern listing")


def _legacy_item(item_id="110000000001", sku=None):
    return ItemRecord(id=item_id, source_api=SourceApi.legacy, legacy_item_id=item_id, sku=sku, title="Legacy listing")


@pytest.mark.asyncio
async def test_inventory_api_wins_when_it_has_the_sku():
    inventory = StubLookup(SourceApi.modern, by_sku={"SKU-1": _modern_item()})
    listings = StubLookup(SourceApi.legacy, by_id={"110000000001": _legacy_item()})

    resolution = await FallbackResolver(inventory, listings).find_item(sku="SKU-1", item_id="110000000001")

    assert resolution.location == INVENTORY_API
    assert resolution.record.source_api == SourceApi.modern
    assert resolution.tried == [INVENTORY_API]
    assert listings.calls == []


@pytest.mark.asyncio
async def test_falls_back_to_trading_by_item_id():
    inventory = StubLookup(SourceApi.modern)
    listings = StubLookup(SourceApi.legacy, by_id={"110000000001": _legacy_item()})

    resolution = await FallbackResolver(inventory, listings).find_item(sku="SKU-1", item_id="110000000001")

    assert resolution.location == TRADING_API
    assert resolution.tried == [INVENTORY_API, TRADING_API]
    assert listings.calls == [("id", "110000000001")]


@pytest.mark.asyncio
async def test_sku_only_search_also_asks_trading_by_sku():
    inventory = StubLookup(SourceApi.modern)
    listings = StubLookup(SourceApi.legacy, by_sku={"OLD-SKU": _legacy_item(sku="OLD-SKU")})

    resolution = await FallbackResolver(inventory, listings).find_item(sku="OLD-SKU")

    assert resolution.location == TRADING_API
    assert listings.calls == [("sku", "OLD-SKU")]


@pytest.mark.asyncio
async def test_item_id_only_skips_inventory_api():
    inventory = StubLookup(SourceApi.modern)
    listings = StubLookup(SourceApi.legacy, by_id={"110000000001": _legacy_item()})

    resolution = await FallbackResolver(inventory, listings).find_item(item_id="110000000001")

    assert resolution.tried == [TRADING_API]
    assert inventory.calls == []


@pytest.mark.asyncio
async def test_miss_everywhere_raises_aggregate_not_found():
    resolver = FallbackResolver(StubLookup(SourceApi.modern), StubLookup(SourceApi.legacy))

    with pytest.raises(NotFoundError) as excinfo:
        await resolver.find_item(sku="SKU-1", item_id="110000000001")

    assert set(excinfo.value.details["attempts"]) == {INVENTORY_API, TRADING_API}


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    UnauthorizedError("token rejected"),
    TransientError("eBay returned 503"),
])
async def test_non_not_found_errors_stop_the_chain(error):
    inventory = StubLookup(SourceApi.modern, error=error)
    listings = StubLookup(SourceApi.legacy, by_id={"110000000001": _legacy_item()})

    with pytest.raises(type(error)):
        await FallbackResolver(inventory, listings).find_item(sku="SKU-1", item_id="110000000001")

    # A failing primary must not be masked by a fallback answer.
    assert listings.calls == []


@pytest.mark.asyncio
async def test_no_identifier_is_rejected_before_any_call():
    inventory = StubLookup(SourceApi.modern)
    listings = StubLookup(SourceApi.legacy)

    with pytest.raises(MissingIdentifier):
        await FallbackResolver(inventory, listings).find_item()

    assert inventory.calls == [] and listings.calls == []


@pytest.mark.asyncio
async def test_resolve_requires_at_least_one_source():
    with pytest.raises(ValueError):
        await resolve("find_item", [])


@pytest.mark.asyncio
async def test_resolve_tries_sources_in_given_order():
    seen = []

    def attempt(location, found):
        async def call():
            seen.append(location)
            if not found:
                raise NotFoundError(location)
            return location
        return FallbackAttempt(location, call)

    resolution = await resolve("lookup", [attempt("a", False), attempt("b", True), attempt("c", True)])

    assert resolution.record == "b"
    assert seen == ["a", "b"]
