"""Address and report orchestration for the BMA backend.

Hard failures raise a BMAError and abort the request. Soft failures (a
comparison address without listing data, a cache write or cache delete that
fails) are logged as warnings and the request carries on.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Protocol

from .database import Store
from .errors import InstructionsFetchError, NotFoundError, PropertyDetailsMissingError, StoreError
from .models import Address, utcnow
from .schemas import (
    AddressOut,
    AddressWithDetails,
    BMAReport,
    DetailedAnalysis,
    PropertyDetails,
)

logger = logging.getLogger(__name__)

REPORT_CACHE_TTL = timedelta(hours=24)

NO_PRIMARY_OPINION = "No primary address set yet."
NO_COMPARISONS_OPINION = "Need at least one enabled comparison address."


class ExtractionClient(Protocol):
    async def extract(self, content: str) -> PropertyDetails: ...


class AnalysisClient(Protocol):
    async def generate(
        self,
        primary: PropertyDetails,
        comparisons: Sequence[PropertyDetails],
        instructions: str,
    ) -> DetailedAnalysis: ...


class BMAService:
    """Coordinates ingestion, address flags, report caching and instructions."""

    def __init__(
        self,
        store: Store,
        extractor: ExtractionClient,
        generator: AnalysisClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.extractor = extractor
        self.generator = generator
        self.clock = clock

    # -------------------------------------------------------------------------
    # Ingestion
    # -------------------------------------------------------------------------

    async def ingest(self, url: str, content: str) -> bool:
        """Extract details from a page and upsert it; returns True on insert."""
        logger.info(f"Received page data from extension: {url}")

        details = await self.extractor.extract(content)
        logger.info(f"Successfully extracted property details for {details.address!r}")

        raw_id, inserted = self.store.upsert_raw_page(
            url, content, details.model_dump(mode="json", by_alias=True)
        )

        if inserted:
            self.store.insert_address(details.address, raw_page_id=raw_id)
            logger.info(f"Created new address record for {details.address!r}")
        else:
            logger.info(f"Updated existing address record for {details.address!r}")
        return inserted

    # -------------------------------------------------------------------------
    # Addresses
    # -------------------------------------------------------------------------

    def list_addresses(self) -> list[AddressWithDetails]:
        results = []
        for address, raw_details in self.store.list_addresses_with_details():
            item = AddressWithDetails(
                id=address.id,
                address_str=address.address_str,
                enabled=address.enabled,
                primary=address.primary,
            )
            if raw_details is not None:
                details = PropertyDetails.model_validate(raw_details)
                item.price = details.price
                item.bedrooms = details.bedrooms
                item.bathrooms = details.bathrooms
                item.square_footage = details.square_footage
                item.property_type = details.property_type
                item.year_built = details.year_built
            results.append(item)
        return results

    def create_address(
        self,
        address_str: str,
        raw_page_id: uuid.UUID | None = None,
        enabled: bool = False,
        primary: bool = False,
    ) -> AddressOut:
        if primary:
            self.store.clear_primary()
        address = self.store.insert_address(
            address_str, raw_page_id=raw_page_id, enabled=enabled, primary=primary
        )
        logger.info(f"Created address {address_str!r} manually")
        return AddressOut.model_validate(address)

    def update_address(self, address_id: uuid.UUID, enabled: bool, primary: bool) -> None:
        """Set both flags on an address, clearing any other primary first.

        Clearing and setting are two separate writes, so concurrent
        set-primary requests can still leave zero or two primaries.
        """
        if self.store.get_address(address_id) is None:
            raise NotFoundError("Address not found")

        if primary:
            cleared = self.store.clear_primary()
            logger.info(f"Cleared primary flag on {cleared} address(es)")

        if not self.store.update_address_flags(address_id, enabled=enabled, primary=primary):
            raise NotFoundError("Address not found")

    def delete_address(self, address_id: uuid.UUID) -> None:
        """Delete an address and, best effort, its raw page data."""
        address = self.store.get_address(address_id)
        if address is None:
            raise NotFoundError("Address not found")

        self.store.delete_address(address_id)
        if address.raw_page_id is not None:
            if not self.store.delete_raw_page(address.raw_page_id):
                logger.warning(f"No raw page data found for deleted address {address.address_str!r}")
        logger.info(f"Deleted address {address.address_str!r}")

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def get_report(self, force_refresh: bool = False) -> BMAReport:
        primary = self.store.find_primary_address()
        if primary is None:
            return BMAReport(opinion=NO_PRIMARY_OPINION)

        comparisons = self.store.find_comparison_addresses()
        if not comparisons:
            return BMAReport(
                primary_address=AddressOut.model_validate(primary),
                opinion=NO_COMPARISONS_OPINION,
            )

        comparison_ids = sorted((a.id for a in comparisons), key=str)

        if force_refresh:
            self._drop_cached_report(primary.id, comparison_ids)
        else:
            cached = self.store.get_cached_report(primary.id, comparison_ids)
            if cached is not None and self.clock() - cached.generated_at < REPORT_CACHE_TTL:
                logger.info(f"Serving cached BMA report generated at {cached.generated_at}")
                return BMAReport.model_validate(cached.report)
            logger.info("No fresh cached BMA report, generating")

        report = await self._generate_report(primary, comparisons)
        self._cache_report(primary.id, comparison_ids, report)
        return report

    async def _generate_report(self, primary: Address, comparisons: list[Address]) -> BMAReport:
        primary_details = self._load_details(primary)
        if primary_details is None:
            raise PropertyDetailsMissingError("Failed to get primary property details")

        comparison_details = []
        for address in comparisons:
            details = self._load_details(address)
            if details is None:
                logger.warning(f"Skipping comparison {address.address_str!r}: no property details")
                continue
            # Listing-specific noise in a peer comparison
            comparison_details.append(
                details.model_copy(update={"days_on_market": 0, "last_price_change": 0})
            )

        analysis = await self.generator.generate(
            primary_details, comparison_details, self.get_instructions_for_analysis()
        )
        logger.info(
            f"Generated BMA report for {primary.address_str!r} "
            f"against {len(comparison_details)} comparison(s)"
        )

        return BMAReport(
            primary_address=AddressOut.model_validate(primary),
            comparison_addresses=[AddressOut.model_validate(a) for a in comparisons],
            opinion=analysis.recommendation,
            detailed_analysis=analysis,
        )

    def _load_details(self, address: Address) -> PropertyDetails | None:
        if address.raw_page_id is None:
            return None
        raw = self.store.get_raw_page(address.raw_page_id)
        if raw is None or raw.property_details is None:
            return None
        return PropertyDetails.model_validate(raw.property_details)

    def _drop_cached_report(self, primary_id: uuid.UUID, comparison_ids: list[uuid.UUID]) -> None:
        try:
            deleted = self.store.delete_cached_report(primary_id, comparison_ids)
        except StoreError as e:
            logger.error(f"Failed to delete cached report: {e}")
            return
        logger.info(f"Forced refresh, deleted {deleted} cached report(s)")

    def _cache_report(
        self, primary_id: uuid.UUID, comparison_ids: list[uuid.UUID], report: BMAReport
    ) -> None:
        try:
            self.store.upsert_cached_report(
                primary_id,
                comparison_ids,
                generated_at=self.clock(),
                report=report.model_dump(mode="json", by_alias=True),
            )
        except StoreError as e:
            logger.error(f"Failed to cache BMA report: {e}")

    # -------------------------------------------------------------------------
    # LLM instructions
    # -------------------------------------------------------------------------

    def get_instructions(self) -> str:
        instructions = self.store.get_instructions()
        return instructions.instructions if instructions is not None else ""

    def get_instructions_for_analysis(self) -> str:
        try:
            return self.get_instructions()
        except StoreError as e:
            raise InstructionsFetchError(f"Error fetching LLM instructions: {e.message}") from e

    def update_instructions(self, instructions: str) -> int:
        """Replace the instructions and drop every cached report."""
        self.store.replace_instructions(instructions, updated_at=self.clock())
        cleared = self.store.delete_all_cached_reports()
        logger.info(f"Replaced LLM instructions, invalidated {cleared} cached report(s)")
        return cleared
