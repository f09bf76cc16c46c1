# tests/utils.py
from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime, timedelta

from bma.schemas import ComparisonValue, DetailedAnalysis, FeatureComparison, PropertyDetails


def listing(address: str, **fields) -> str:
    """Listing page content understood by FakeExtractor (JSON of the details)."""
    details = {
        "address": address,
        "price": 450000,
        "bedrooms": 3,
        "bathrooms": 2,
        "squareFootage": 1800,
        "yearBuilt": 1995,
        "propertyType": "Single Family",
        "lotSize": "0.25 acres",
        "mlsNumber": "MLS-1",
        "daysOnMarket": 12,
        "lastPriceChange": -5000,
        "description": f"Nice home at {address}",
    }
    details.update(fields)
    return json.dumps(details)


class FakeExtractor:
    """Parses listing() content instead of calling the LLM."""

    def __init__(self):
        self.calls: list[str] = []
        self.error: Exception | None = None

    async def extract(self, content: str) -> PropertyDetails:
        self.calls.append(content)
        if self.error is not None:
            raise self.error
        return PropertyDetails.model_validate(json.loads(content))


class FakeGenerator:
    """Builds a deterministic analysis and records what it was asked."""

    def __init__(self):
        self.calls: list[tuple[PropertyDetails, list[PropertyDetails], str]] = []
        self.error: Exception | None = None

    async def generate(
        self,
        primary: PropertyDetails,
        comparisons: Sequence[PropertyDetails],
        instructions: str,
    ) -> DetailedAnalysis:
        self.calls.append((primary, list(comparisons), instructions))
        if self.error is not None:
            raise self.error
        return DetailedAnalysis(
            primary_property_details=primary,
            comparison_details=list(comparisons),
            price_analysis="Priced in line with the comparisons.",
            feature_comparison=[
                FeatureComparison(
                    feature="bedrooms",
                    primary_value=str(primary.bedrooms),
                    comparison=[
                        ComparisonValue(address=c.address, value=str(c.bedrooms))
                        for c in comparisons
                    ],
                    analysis="Comparable bedroom count.",
                )
            ],
            market_trends="Stable market.",
            recommendation=f"List at ${primary.price:,.0f} (analysis #{len(self.calls)})",
        )


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)
