"""
Provider aggregation: fan out one search to every selected provider, normalize
what comes back, and merge it into a single ranked result.

A provider failure (timeout, network error, missing key, bad payload) never
fails the request on its own; it is recorded in the per-provider statuses.
Only when every provider failed does the search raise NoProviderAvailable.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import logging
import time

from travelmesh.core.cache import Cache, make_cache_key
from travelmesh.core.ranking import build_comparison, build_recommendations, rank_offers
from travelmesh.errors import NoProviderAvailable, NormalizationError, ProviderError, ValidationError
from travelmesh.models import AggregateResult, NormalizedOffer, PriceTrack, ProviderResult, ProviderStatus, SearchRequest

logger = logging.getLogger(__name__)

FetchFn = Callable[[SearchRequest], Awaitable[list]]
AdapterFn = Callable[[dict], NormalizedOffer]


@dataclass(frozen=True)
class ProviderSpec:
    provider_id: str
    fetch: FetchFn
    adapter: AdapterFn


@dataclass(frozen=True)
class Snapshot:
    """What the search cache holds: a merged result and when it was fetched."""
    result: AggregateResult
    fetched_at: datetime


class ProviderRegistry:
    """Maps (offer kind, provider id) to the fetch function and adapter for it."""

    def __init__(self):
        self._providers: Dict[Tuple[str, str], ProviderSpec] = {}

    def register(self, kind: str, provider_id: str, fetch: FetchFn, adapter: AdapterFn) -> None:
        self._providers[(kind, provider_id)] = ProviderSpec(provider_id, fetch, adapter)

    def get(self, kind: str, provider_id: str) -> Optional[ProviderSpec]:
        return self._providers.get((kind, provider_id))

    def available(self, kind: str) -> List[str]:
        return sorted(pid for (k, pid) in self._providers if k == kind)


def search_cache_key(request: SearchRequest) -> str:
    return make_cache_key(f"search:{request.kind}", request.model_dump(mode="json") | {"providers": request.providers})


class ProviderAggregator:

    def __init__(self, registry: ProviderRegistry, cache: Cache, timeout_seconds: float = 12.0):
        self.registry = registry
        self.cache = cache
        self.timeout_seconds = timeout_seconds

    def _resolve_providers(self, request: SearchRequest) -> List[ProviderSpec]:
        if not request.providers:
            raise ValidationError("At least one provider must be selected")
        unknown = sorted(p for p in request.providers if self.registry.get(request.kind, p) is None)
        if unknown:
            raise ValidationError(
                f"Unknown {request.kind} provider(s): {', '.join(unknown)}",
                details={"available": self.registry.available(request.kind)},
            )
        return [self.registry.get(request.kind, p) for p in sorted(request.providers)]

    async def _call_provider(self, spec: ProviderSpec, request: SearchRequest) -> ProviderResult:
        start = time.monotonic()
        try:
            payload = await asyncio.wait_for(spec.fetch(request), timeout=self.timeout_seconds)
            if not isinstance(payload, list):
                raise ProviderError(spec.provider_id, f"malformed payload ({type(payload).__name__}, expected list)")
        except asyncio.TimeoutError:
            error = f"timed out after {self.timeout_seconds}s"
        except ProviderError as e:
            error = e.reason
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        else:
            return ProviderResult(
                provider_id=spec.provider_id,
                succeeded=True,
                raw_payload=payload,
                latency_ms=int((time.monotonic() - start) * 1000),
            )

        logger.warning(f"[{spec.provider_id}] provider failed: {error}")
        return ProviderResult(
            provider_id=spec.provider_id,
            succeeded=False,
            error=error,
            latency_ms=int((time.monotonic() - start) * 1000),
        )

    def _normalize(self, spec: ProviderSpec, result: ProviderResult, used_ids: set) -> Tuple[List[NormalizedOffer], ProviderStatus]:
        offers = []
        dropped = 0
        for raw in result.raw_payload:
            try:
                offer = spec.adapter(raw)
            except (NormalizationError, AttributeError, KeyError, TypeError, ValueError) as e:
                # Skip malformed offers; the rest of the provider's payload is still usable
                dropped += 1
                logger.warning(f"[{spec.provider_id}] dropped offer: {e}")
                continue

            offer_id = f"{spec.provider_id}:{offer.id}"
            if offer_id in used_ids:
                n = 2
                while f"{offer_id}#{n}" in used_ids:
                    n += 1
                offer_id = f"{offer_id}#{n}"
            used_ids.add(offer_id)
            offers.append(offer.model_copy(update={"id": offer_id, "provider_id": spec.provider_id}))

        status = ProviderStatus(
            provider_id=spec.provider_id,
            succeeded=True,
            offer_count=len(offers),
            dropped_count=dropped,
        )
        return offers, status

    async def _fetch(self, request: SearchRequest) -> Tuple[Snapshot, bool]:
        specs = self._resolve_providers(request)

        cache_key = search_cache_key(request)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info(f"Cache hit for {cache_key}")
            return cached, True

        logger.info(f"Searching {request.kind} offers for {request.destination} via {', '.join(s.provider_id for s in specs)}")
        results = await asyncio.gather(*(self._call_provider(spec, request) for spec in specs))

        offers: List[NormalizedOffer] = []
        statuses: List[ProviderStatus] = []
        used_ids: set = set()
        for spec, result in zip(specs, results):
            if not result.succeeded:
                statuses.append(ProviderStatus(provider_id=spec.provider_id, succeeded=False, error=result.error))
                continue
            provider_offers, status = self._normalize(spec, result, used_ids)
            offers.extend(provider_offers)
            statuses.append(status)

        if not any(s.succeeded for s in statuses):
            raise NoProviderAvailable(
                f"All {request.kind} providers failed",
                details={"providers": [s.model_dump() for s in statuses]},
            )

        ranked = rank_offers(offers)
        aggregate = AggregateResult(
            kind=request.kind,
            offers=ranked,
            comparison=build_comparison(ranked),
            recommendations=build_recommendations(ranked),
            providers=statuses,
        )
        logger.info(f"Aggregated {len(ranked)} {request.kind} offers from {sum(s.succeeded for s in statuses)}/{len(statuses)} providers")

        snapshot = Snapshot(result=aggregate, fetched_at=datetime.now(timezone.utc))
        self.cache.set(cache_key, snapshot)
        return snapshot, False

    async def search(self, request: SearchRequest) -> AggregateResult:
        snapshot, _ = await self._fetch(request)
        return snapshot.result

    async def track(self, request: SearchRequest) -> PriceTrack:
        """Same search, reported with whether it was served from cache and when it was fetched."""
        snapshot, cached = await self._fetch(request)
        return PriceTrack(result=snapshot.result, cached=cached, last_update=snapshot.fetched_at)
