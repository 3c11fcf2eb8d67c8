import time

import pytest

from conftest import StubProvider, amadeus_hotels
from travelmesh.core.cache import SimpleCache
from travelmesh.errors import NoProviderAvailable, ProviderError, ValidationError
from travelmesh.skills import normalize_offers
from travelmesh.skills.aggregate_offers import ProviderAggregator, ProviderRegistry


def registry_with(**providers):
    registry = ProviderRegistry()
    for provider_id, stub in providers.items():
        registry.register("hotel", provider_id, stub, normalize_offers.normalize_amadeus_hotel)
    return registry


@pytest.mark.asyncio
async def test_paris_scenario_tolerates_a_timed_out_provider(paris_registry, hotel_request):
    registry, amadeus, skyscanner = paris_registry
    aggregator = ProviderAggregator(registry, SimpleCache(), timeout_seconds=0.05)

    result = await aggregator.search(hotel_request())

    assert len(result.offers) == 3
    assert result.comparison.price_range.min == 90
    assert result.comparison.price_range.max == 150
    assert result.comparison.price_range.average == 120
    assert result.recommendations.cheapest.price.amount == 90
    assert result.comparison.provider_comparison["amadeus"].total == 3
    assert "skyscanner" not in result.comparison.provider_comparison

    statuses = {s.provider_id: s for s in result.providers}
    assert statuses["amadeus"].succeeded
    assert statuses["amadeus"].offer_count == 3
    assert not statuses["skyscanner"].succeeded
    assert "timed out" in statuses["skyscanner"].error


@pytest.mark.asyncio
async def test_offers_come_only_from_succeeded_providers(hotel_request):
    good = StubProvider(amadeus_hotels(100, 200))
    bad = StubProvider(error=ProviderError("serpapi", "rate limited"))
    aggregator = ProviderAggregator(registry_with(amadeus=good, serpapi=bad), SimpleCache())

    result = await aggregator.search(hotel_request(["amadeus", "serpapi"]))

    assert {o.provider_id for o in result.offers} == {"amadeus"}
    failed = [s for s in result.providers if not s.succeeded]
    assert [s.provider_id for s in failed] == ["serpapi"]
    assert failed[0].error == "rate limited"


@pytest.mark.asyncio
async def test_unexpected_provider_exception_is_a_failure(hotel_request):
    good = StubProvider(amadeus_hotels(100))
    broken = StubProvider(error=RuntimeError("boom"))
    aggregator = ProviderAggregator(registry_with(amadeus=good, serpapi=broken), SimpleCache())

    result = await aggregator.search(hotel_request(["amadeus", "serpapi"]))

    assert len(result.offers) == 1
    assert "boom" in next(s.error for s in result.providers if s.provider_id == "serpapi")


@pytest.mark.asyncio
async def test_all_providers_failing_raises(hotel_request):
    first = StubProvider(error=ProviderError("amadeus", "AMADEUS_CLIENT_ID / AMADEUS_CLIENT_SECRET not configured"))
    second = StubProvider(delay=1.0)
    aggregator = ProviderAggregator(registry_with(amadeus=first, skyscanner=second), SimpleCache(), timeout_seconds=0.05)

    with pytest.raises(NoProviderAvailable) as excinfo:
        await aggregator.search(hotel_request())

    statuses = excinfo.value.details["providers"]
    assert len(statuses) == 2
    assert not any(s["succeeded"] for s in statuses)


@pytest.mark.asyncio
async def test_failures_are_not_cached(hotel_request):
    stub = StubProvider(error=ProviderError("amadeus", "down"))
    aggregator = ProviderAggregator(registry_with(amadeus=stub), SimpleCache())

    for _ in range(2):
        with pytest.raises(NoProviderAvailable):
            await aggregator.search(hotel_request(["amadeus"]))
    assert stub.calls == 2


@pytest.mark.asyncio
async def test_malformed_payload_fails_the_provider(hotel_request):
    stub = StubProvider({"data": []})
    aggregator = ProviderAggregator(registry_with(amadeus=stub), SimpleCache())

    with pytest.raises(NoProviderAvailable):
        await aggregator.search(hotel_request(["amadeus"]))


@pytest.mark.asyncio
async def test_identical_request_is_served_from_cache(paris_registry, hotel_request):
    registry, amadeus, skyscanner = paris_registry
    aggregator = ProviderAggregator(registry, SimpleCache(), timeout_seconds=0.05)

    first = await aggregator.search(hotel_request())
    second = await aggregator.search(hotel_request(["skyscanner", "amadeus"]))

    assert first.model_dump_json() == second.model_dump_json()
    assert amadeus.calls == 1
    assert skyscanner.calls == 1


@pytest.mark.asyncio
async def test_different_provider_set_is_a_different_cache_entry(paris_registry, hotel_request):
    registry, amadeus, skyscanner = paris_registry
    aggregator = ProviderAggregator(registry, SimpleCache(), timeout_seconds=0.05)

    await aggregator.search(hotel_request())
    await aggregator.search(hotel_request(["amadeus"]))

    assert amadeus.calls == 2
    assert skyscanner.calls == 1


@pytest.mark.asyncio
async def test_unknown_provider_is_rejected_before_any_call(hotel_request):
    stub = StubProvider(amadeus_hotels(100))
    aggregator = ProviderAggregator(registry_with(amadeus=stub), SimpleCache())

    with pytest.raises(ValidationError) as excinfo:
        await aggregator.search(hotel_request(["amadeus", "expedia"]))

    assert "expedia" in excinfo.value.message
    assert excinfo.value.details == {"available": ["amadeus"]}
    assert stub.calls == 0


@pytest.mark.asyncio
async def test_empty_provider_set_is_rejected(hotel_request):
    aggregator = ProviderAggregator(registry_with(amadeus=StubProvider()), SimpleCache())
    with pytest.raises(ValidationError):
        await aggregator.search(hotel_request([]))


@pytest.mark.asyncio
async def test_ids_are_unique_across_and_within_providers(hotel_request):
    same_ids = amadeus_hotels(100, 200)
    aggregator = ProviderAggregator(
        registry_with(
            amadeus=StubProvider(same_ids + amadeus_hotels(300)),
            serpapi=StubProvider(amadeus_hotels(150)),
        ),
        SimpleCache(),
    )

    result = await aggregator.search(hotel_request(["amadeus", "serpapi"]))
    ids = [o.id for o in result.offers]

    assert len(ids) == len(set(ids)) == 4
    assert "amadeus:OFF0" in ids
    assert "amadeus:OFF0#2" in ids
    assert "serpapi:OFF0" in ids


@pytest.mark.asyncio
async def test_malformed_offers_are_dropped_and_counted(hotel_request):
    payload = amadeus_hotels(100, 200)
    payload.append({"hotel": {"hotelId": "H9"}, "offers": [{"id": "OFF9"}]})
    aggregator = ProviderAggregator(registry_with(amadeus=StubProvider(payload)), SimpleCache())

    result = await aggregator.search(hotel_request(["amadeus"]))

    assert len(result.offers) == 2
    assert result.providers[0].dropped_count == 1
    assert result.providers[0].offer_count == 2


@pytest.mark.asyncio
async def test_zero_offers_from_a_succeeded_provider(hotel_request):
    aggregator = ProviderAggregator(registry_with(amadeus=StubProvider([])), SimpleCache())

    result = await aggregator.search(hotel_request(["amadeus"]))

    assert result.offers == []
    assert result.comparison.price_range.average == 0
    assert result.recommendations.cheapest is None
    assert result.providers[0].succeeded


@pytest.mark.asyncio
@pytest.mark.parametrize("junk", [
    "not-a-dict",
    None,
    42,
    {"hotel": "Hotel Lutetia", "offers": [{"id": "OFF9", "price": {"total": "95", "currency": "EUR"}}]},
    {"hotel": {"hotelId": "H9"}, "offers": ["OFF9"]},
])
async def test_junk_items_never_fail_the_search(hotel_request, junk):
    good = StubProvider(amadeus_hotels(100, 200))
    noisy = StubProvider(amadeus_hotels(150, prefix="S") + [junk])
    aggregator = ProviderAggregator(registry_with(amadeus=good, serpapi=noisy), SimpleCache())

    result = await aggregator.search(hotel_request(["amadeus", "serpapi"]))

    statuses = {s.provider_id: s for s in result.providers}
    assert statuses["serpapi"].succeeded
    assert statuses["amadeus"].offer_count == 2
    assert statuses["serpapi"].offer_count + statuses["serpapi"].dropped_count == 2
    assert len(result.offers) == 2 + statuses["serpapi"].offer_count


@pytest.mark.asyncio
async def test_providers_are_called_concurrently(hotel_request):
    slow_a = StubProvider(amadeus_hotels(100), delay=0.3)
    slow_b = StubProvider(amadeus_hotels(200), delay=0.3)
    aggregator = ProviderAggregator(registry_with(amadeus=slow_a, serpapi=slow_b), SimpleCache(), timeout_seconds=2)

    start = time.monotonic()
    result = await aggregator.search(hotel_request(["amadeus", "serpapi"]))
    elapsed = time.monotonic() - start

    assert len(result.offers) == 2
    assert elapsed < 0.55


@pytest.mark.asyncio
async def test_track_reports_cache_state_and_fetch_time(paris_registry, hotel_request):
    registry, amadeus, skyscanner = paris_registry
    aggregator = ProviderAggregator(registry, SimpleCache(), timeout_seconds=0.05)

    first = await aggregator.track(hotel_request())
    second = await aggregator.track(hotel_request())

    assert first.cached is False
    assert second.cached is True
    assert first.last_update == second.last_update
    assert first.last_update.tzinfo is not None
    assert len(second.result.offers) == 3
    assert second.result.model_dump_json() == first.result.model_dump_json()
    assert amadeus.calls == 1


@pytest.mark.asyncio
async def test_track_shares_the_search_cache(paris_registry, hotel_request):
    registry, amadeus, skyscanner = paris_registry
    aggregator = ProviderAggregator(registry, SimpleCache(), timeout_seconds=0.05)

    searched = await aggregator.search(hotel_request())
    tracked = await aggregator.track(hotel_request())

    assert tracked.cached is True
    assert tracked.result.model_dump_json() == searched.model_dump_json()
    assert amadeus.calls == 1
