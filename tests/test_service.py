# tests/test_service.py
import uuid

import pytest

from bma.errors import (
    InstructionsFetchError,
    MalformedResponseError,
    NotFoundError,
    PropertyDetailsMissingError,
    StoreError,
)
from bma.service import NO_COMPARISONS_OPINION, NO_PRIMARY_OPINION
from tests.utils import listing


async def ingest_all(service, *addresses):
    for address in addresses:
        await service.ingest(f"https://listings.example/{address}", listing(address))
    return {a.address_str: a for a in service.store.list_addresses()}


async def configure(service, primary, comparisons, disabled=()):
    """Ingest addresses and set the primary and enabled comparison flags."""
    addrs = await ingest_all(service, primary, *comparisons, *disabled)
    service.update_address(addrs[primary].id, enabled=False, primary=True)
    for name in comparisons:
        service.update_address(addrs[name].id, enabled=True, primary=False)
    return addrs


# -------- Ingestion --------


async def test_ingest_twice_keeps_one_raw_page_and_address(service, store):
    assert await service.ingest("https://a/1", listing("1 Main St")) is True
    assert await service.ingest("https://a/2", listing("1 Main St", price=399000)) is False

    addresses = store.list_addresses()
    assert len(addresses) == 1
    raw = store.get_raw_page(addresses[0].raw_page_id)
    assert raw.url == "https://a/2"
    assert raw.property_details["price"] == 399000


async def test_ingested_address_starts_disabled_and_not_primary(service, store):
    await service.ingest("https://a/1", listing("1 Main St"))
    [address] = store.list_addresses()
    assert address.enabled is False
    assert address.primary is False
    assert address.address_str == "1 Main St"


async def test_failed_extraction_writes_nothing(service, store, extractor):
    extractor.error = MalformedResponseError("Invalid response format")
    with pytest.raises(MalformedResponseError):
        await service.ingest("https://a/1", "garbage")
    assert store.list_addresses() == []


# -------- Address flags --------


async def test_setting_primary_moves_it(service, store):
    addrs = await ingest_all(service, "A", "B")
    service.update_address(addrs["A"].id, enabled=False, primary=True)
    service.update_address(addrs["B"].id, enabled=False, primary=True)

    flags = {a.address_str: a.primary for a in store.list_addresses()}
    assert flags == {"A": False, "B": True}


async def test_update_sets_both_flags_explicitly(service, store):
    addrs = await ingest_all(service, "A")
    service.update_address(addrs["A"].id, enabled=True, primary=True)
    service.update_address(addrs["A"].id, enabled=False, primary=False)

    address = store.get_address(addrs["A"].id)
    assert address.enabled is False
    assert address.primary is False


async def test_update_unknown_address_keeps_current_primary(service, store):
    addrs = await ingest_all(service, "A")
    service.update_address(addrs["A"].id, enabled=False, primary=True)

    with pytest.raises(NotFoundError):
        service.update_address(uuid.uuid4(), enabled=False, primary=True)
    assert store.find_primary_address().id == addrs["A"].id


def test_manual_primary_creation_clears_existing_primary(service, store):
    service.create_address("A", primary=True)
    service.create_address("B", primary=True)
    assert [a.address_str for a in store.list_addresses() if a.primary] == ["B"]


async def test_delete_address_removes_raw_page(service, store):
    addrs = await ingest_all(service, "A")
    raw_id = addrs["A"].raw_page_id

    service.delete_address(addrs["A"].id)

    assert store.get_address(addrs["A"].id) is None
    assert store.get_raw_page(raw_id) is None


def test_delete_unknown_address(service):
    with pytest.raises(NotFoundError):
        service.delete_address(uuid.uuid4())


def test_delete_address_without_raw_page(service, store):
    created = service.create_address("Manual Rd")
    service.delete_address(created.id)
    assert store.list_addresses() == []


async def test_list_addresses_includes_headline_details(service):
    await ingest_all(service, "A")
    service.create_address("Manual Rd")

    rows = {row.address_str: row for row in service.list_addresses()}
    assert rows["A"].price == 450000
    assert rows["A"].square_footage == 1800
    assert rows["Manual Rd"].price is None


# -------- Report states --------


async def test_report_without_primary(service, generator):
    await ingest_all(service, "A")
    report = await service.get_report()

    assert report.opinion == NO_PRIMARY_OPINION
    assert report.primary_address is None
    assert report.comparison_addresses is None
    assert generator.calls == []


async def test_report_without_comparisons(service, generator):
    addrs = await configure(service, "A", [], disabled=["B"])
    report = await service.get_report()

    assert report.opinion == NO_COMPARISONS_OPINION
    assert report.primary_address.id == addrs["A"].id
    assert report.comparison_addresses is None
    assert generator.calls == []


async def test_enabled_primary_is_not_its_own_comparison(service, generator):
    addrs = await ingest_all(service, "A")
    service.update_address(addrs["A"].id, enabled=True, primary=True)

    report = await service.get_report()
    assert report.opinion == NO_COMPARISONS_OPINION


async def test_generated_report_contents(service, generator):
    addrs = await configure(service, "A", ["B", "C"], disabled=["D"])

    report = await service.get_report()

    assert report.primary_address.id == addrs["A"].id
    assert {a.address_str for a in report.comparison_addresses} == {"B", "C"}
    assert report.opinion == "List at $450,000 (analysis #1)"
    assert report.detailed_analysis.recommendation == report.opinion

    primary, comparisons, instructions = generator.calls[0]
    assert primary.address == "A"
    assert primary.days_on_market == 12
    assert {c.address for c in comparisons} == {"B", "C"}
    assert all(c.days_on_market == 0 and c.last_price_change == 0 for c in comparisons)
    assert instructions == ""


async def test_comparison_without_details_is_skipped(service, generator):
    await configure(service, "A", ["B"])
    manual = service.create_address("Manual Rd", enabled=True)

    report = await service.get_report()

    _, comparisons, _ = generator.calls[0]
    assert [c.address for c in comparisons] == ["B"]
    assert manual.id in {a.id for a in report.comparison_addresses}


async def test_primary_without_details_fails(service):
    await ingest_all(service, "B")
    service.create_address("Manual Rd", primary=True)
    service.update_address(
        next(a.id for a in service.store.list_addresses() if a.address_str == "B"),
        enabled=True,
        primary=False,
    )

    with pytest.raises(PropertyDetailsMissingError):
        await service.get_report()


async def test_generation_failure_is_not_cached(service, store, generator):
    addrs = await configure(service, "A", ["B"])
    generator.error = MalformedResponseError("Invalid response format")

    with pytest.raises(MalformedResponseError):
        await service.get_report()
    assert store.get_cached_report(addrs["A"].id, [addrs["B"].id]) is None


# -------- Caching --------


async def test_second_report_within_ttl_is_served_from_cache(service, generator, clock):
    await configure(service, "A", ["B"])

    first = await service.get_report()
    clock.advance(hours=23, minutes=59)
    second = await service.get_report()

    assert len(generator.calls) == 1
    assert second.model_dump_json(by_alias=True) == first.model_dump_json(by_alias=True)


async def test_report_older_than_ttl_is_regenerated(service, generator, clock):
    await configure(service, "A", ["B"])

    await service.get_report()
    clock.advance(hours=24)
    report = await service.get_report()

    assert len(generator.calls) == 2
    assert report.opinion.endswith("(analysis #2)")


async def test_refresh_regenerates_fresh_cache(service, store, generator):
    addrs = await configure(service, "A", ["B"])

    await service.get_report()
    refreshed = await service.get_report(force_refresh=True)
    cached_after = await service.get_report()

    assert len(generator.calls) == 2
    assert refreshed.opinion.endswith("(analysis #2)")
    assert cached_after.opinion == refreshed.opinion
    assert store.get_cached_report(addrs["A"].id, [addrs["B"].id]) is not None


async def test_changing_comparison_set_changes_cache_key(service, generator):
    addrs = await configure(service, "A", ["B"], disabled=["C"])

    await service.get_report()
    service.update_address(addrs["C"].id, enabled=True, primary=False)
    await service.get_report()
    service.update_address(addrs["C"].id, enabled=False, primary=False)
    await service.get_report()

    # Back to {B}: still cached from the first call
    assert len(generator.calls) == 2


async def test_updating_instructions_invalidates_every_report(service, store, generator):
    addrs = await configure(service, "A", ["B"])
    await service.get_report()

    cleared = service.update_instructions("Stress the school district.")
    report = await service.get_report()

    assert cleared == 1
    assert len(generator.calls) == 2
    assert generator.calls[-1][2] == "Stress the school district."
    assert report.opinion.endswith("(analysis #2)")
    assert service.get_instructions() == "Stress the school district."
    assert store.get_cached_report(addrs["A"].id, [addrs["B"].id]) is not None


async def test_cache_write_failure_still_returns_report(service, store, generator, monkeypatch):
    await configure(service, "A", ["B"])

    def _broken(*args, **kwargs):
        raise StoreError("Database error: disk full")

    monkeypatch.setattr(store, "upsert_cached_report", _broken)

    report = await service.get_report()
    assert report.opinion == "List at $450,000 (analysis #1)"


async def test_instructions_fetch_failure_is_distinct(service, store, monkeypatch):
    await configure(service, "A", ["B"])

    def _broken():
        raise StoreError("Database error: connection reset")

    monkeypatch.setattr(store, "get_instructions", _broken)

    with pytest.raises(InstructionsFetchError):
        await service.get_report()


async def test_refresh_survives_failed_cache_delete(service, store, generator, monkeypatch):
    await configure(service, "A", ["B"])
    await service.get_report()

    def _broken(*args, **kwargs):
        raise StoreError("Database error: lock timeout")

    monkeypatch.setattr(store, "delete_cached_report", _broken)

    report = await service.get_report(force_refresh=True)
    assert len(generator.calls) == 2
    assert report.opinion.endswith("(analysis #2)")


async def test_ingest_after_manual_address_with_same_string(service, store):
    service.create_address("1 Main St")

    with pytest.raises(StoreError):
        await service.ingest("https://a/1", listing("1 Main St"))

    # The raw page stays behind, unlinked
    [address] = store.list_addresses()
    assert address.raw_page_id is None
    assert await service.ingest("https://a/1", listing("1 Main St")) is False
