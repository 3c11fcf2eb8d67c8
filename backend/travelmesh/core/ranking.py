from travelmesh.models import Comparison, NormalizedOffer, NumericRange, PriceRange, ProviderComparison, Recommendations
from typing import Dict, List, Optional
from collections import Counter, defaultdict
import statistics

# Weights of the best-value score (out of 100)
PRICE_WEIGHT = 60.0
SECONDARY_WEIGHT = 40.0
MAX_COUNTED_STOPS = 3

def calculate_score(offer: NormalizedOffer, max_price: float) -> float:
    """
    Calculate the value score of an offer relative to the rest of its result set.
    Higher score is better. Lower price always scores higher; the secondary
    signal is stop count for flights and guest rating for hotels.
    """
    breakdown = {}

    if max_price > 0:
        price_score = PRICE_WEIGHT * (1 - offer.price.amount / max_price)
    else:
        price_score = PRICE_WEIGHT
    breakdown['price'] = f"+{price_score:.1f} (Price: {offer.price.amount} {offer.price.currency})"

    secondary = 0.0
    if offer.kind == "flight":
        stops = getattr(offer, "stops", None)
        if stops is not None:
            secondary = SECONDARY_WEIGHT * (1 - min(stops, MAX_COUNTED_STOPS) / MAX_COUNTED_STOPS)
            breakdown['stops'] = f"+{secondary:.1f} ({stops} stops)"
        else:
            breakdown['stops'] = "+0.0 (stops unknown)"
    else:
        rating = getattr(offer, "rating", None)
        if rating is not None:
            secondary = SECONDARY_WEIGHT * (max(0.0, min(rating, 5.0)) / 5.0)
            breakdown['rating'] = f"+{secondary:.1f} (Rating: {rating})"
        else:
            breakdown['rating'] = "+0.0 (rating unknown)"

    score = round(price_score + secondary, 4)
    offer.score = score
    offer.score_breakdown = breakdown
    return score

def rank_offers(offers: List[NormalizedOffer]) -> List[NormalizedOffer]:
    """
    Score and sort offers: cheapest first, then best value, then id so the
    order never depends on which provider answered first.
    """
    max_price = max((o.price.amount for o in offers), default=0.0)
    for offer in offers:
        calculate_score(offer, max_price)

    return sorted(offers, key=lambda x: (x.price.amount, -x.score, x.id))

def _range(values: List[float]) -> Optional[NumericRange]:
    if not values:
        return None
    return NumericRange(min=min(values), max=max(values), average=statistics.mean(values))

def _price_range(prices: List[float]) -> PriceRange:
    # Exact mean: min <= average <= max must hold for repeated float prices too
    return PriceRange(
        min=min(prices),
        max=max(prices),
        average=statistics.mean(prices),
        median=statistics.median(prices),
    )

def _provider_comparison(offers: List[NormalizedOffer]) -> Dict[str, ProviderComparison]:
    prices = defaultdict(list)
    for offer in offers:
        prices[offer.provider_id].append(offer.price.amount)
    return {
        provider_id: ProviderComparison(total=len(amounts), price_range=_price_range(amounts))
        for provider_id, amounts in sorted(prices.items())
    }

def build_comparison(offers: List[NormalizedOffer]) -> Comparison:
    if not offers:
        return Comparison()

    comparison = Comparison(
        price_range=_price_range([o.price.amount for o in offers]),
        provider_counts=dict(sorted(Counter(o.provider_id for o in offers).items())),
        provider_comparison=_provider_comparison(offers),
        total_options=len(offers),
    )

    if offers[0].kind == "flight":
        durations = [o.duration_minutes for o in offers if o.duration_minutes is not None]
        comparison.duration_range = _range(durations)
        comparison.direct_flights = sum(1 for o in offers if o.stops == 0)
    else:
        comparison.rating_range = _range([o.rating for o in offers if o.rating is not None])
    return comparison

def build_recommendations(offers: List[NormalizedOffer]) -> Recommendations:
    """Pick cheapest / fastest / best value (and highest rated for hotels). Expects scored offers."""
    if not offers:
        return Recommendations()

    recommendations = Recommendations(
        cheapest=min(offers, key=lambda o: (o.price.amount, o.id)),
        best_value=min(offers, key=lambda o: (-o.score, o.price.amount, o.id)),
    )

    if offers[0].kind == "flight":
        timed = [o for o in offers if o.duration_minutes is not None]
        if timed:
            recommendations.fastest = min(timed, key=lambda o: (o.duration_minutes, o.price.amount, o.id))
    else:
        rated = [o for o in offers if o.rating is not None]
        if rated:
            recommendations.highest_rated = min(rated, key=lambda o: (-o.rating, o.price.amount, o.id))
    return recommendations
