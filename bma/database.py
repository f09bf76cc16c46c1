"""Database connection, schema bootstrap and collection-scoped CRUD."""

import logging
import uuid
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import Engine, create_engine, delete, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import StoreError
from .models import Address, Base, CachedBMAReport, LLMInstructions, RawPageData, utcnow

logger = logging.getLogger(__name__)


def comparison_key(comparison_ids: Sequence[uuid.UUID]) -> tuple[list[str], str]:
    """Return the sorted comparison IDs and the string key derived from them."""
    sorted_ids = sorted(str(cid) for cid in comparison_ids)
    return sorted_ids, ",".join(sorted_ids)


class Store:
    """Owns the engine and exposes CRUD over the four BMA collections.

    Every method runs in its own session; any SQLAlchemy failure surfaces
    as StoreError.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
        )

    @classmethod
    def from_url(cls, database_url: str) -> "Store":
        return cls(create_engine(database_url, echo=False, pool_pre_ping=True))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional session: commit on success, rollback on failure."""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Store operation failed: {e}")
            raise StoreError(f"Database error: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        """Create tables and unique indexes, then verify connectivity."""
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to initialize collections: {e}") from e
        self.ping()
        logger.info("Database schema ready")

    def ping(self) -> None:
        with self.session() as db:
            db.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # raw_page_data
    # ------------------------------------------------------------------

    def upsert_raw_page(self, url: str, content: str, details: dict) -> tuple[uuid.UUID, bool]:
        """Insert or fully replace the raw page keyed by the extracted address.

        Returns the raw page ID and whether a new document was inserted.
        """
        address = details.get("address", "")
        try:
            with self.session() as db:
                raw = db.scalar(select(RawPageData).where(RawPageData.address == address))
                inserted = raw is None
                if inserted:
                    raw = RawPageData(address=address)
                    db.add(raw)
                raw.url = url
                raw.content = content
                raw.property_details = details
                db.flush()
                return raw.id, inserted
        except StoreError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise

        # A concurrent writer inserted the same address first; latest write wins.
        with self.session() as db:
            raw = db.scalar(select(RawPageData).where(RawPageData.address == address))
            if raw is None:
                raise StoreError(f"Raw page data for {address!r} vanished during upsert")
            raw.url = url
            raw.content = content
            raw.property_details = details
            return raw.id, False

    def get_raw_page(self, raw_page_id: uuid.UUID) -> RawPageData | None:
        with self.session() as db:
            return db.get(RawPageData, raw_page_id)

    def delete_raw_page(self, raw_page_id: uuid.UUID) -> bool:
        with self.session() as db:
            result = db.execute(delete(RawPageData).where(RawPageData.id == raw_page_id))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # addresses
    # ------------------------------------------------------------------

    def list_addresses(self) -> list[Address]:
        with self.session() as db:
            return list(db.scalars(select(Address).order_by(Address.created_at)))

    def list_addresses_with_details(self) -> list[tuple[Address, dict | None]]:
        """All addresses joined with their raw page's property details."""
        with self.session() as db:
            rows = db.execute(
                select(Address, RawPageData.property_details)
                .outerjoin(RawPageData, Address.raw_page_id == RawPageData.id)
                .order_by(Address.created_at)
            ).all()
            return [(row[0], row[1]) for row in rows]

    def get_address(self, address_id: uuid.UUID) -> Address | None:
        with self.session() as db:
            return db.get(Address, address_id)

    def find_primary_address(self) -> Address | None:
        with self.session() as db:
            return db.scalars(
                select(Address).where(Address.primary.is_(True)).order_by(Address.created_at)
            ).first()

    def find_comparison_addresses(self) -> list[Address]:
        """Addresses that are enabled and not primary."""
        with self.session() as db:
            return list(
                db.scalars(
                    select(Address)
                    .where(Address.enabled.is_(True), Address.primary.is_(False))
                    .order_by(Address.created_at)
                )
            )

    def insert_address(
        self,
        address_str: str,
        raw_page_id: uuid.UUID | None = None,
        enabled: bool = False,
        primary: bool = False,
    ) -> Address:
        with self.session() as db:
            address = Address(
                address_str=address_str,
                raw_page_id=raw_page_id,
                enabled=enabled,
                primary=primary,
            )
            db.add(address)
            db.flush()
            return address

    def clear_primary(self) -> int:
        """Unset the primary flag on every address; returns how many changed."""
        with self.session() as db:
            result = db.execute(
                update(Address).where(Address.primary.is_(True)).values(primary=False)
            )
            return result.rowcount

    def update_address_flags(self, address_id: uuid.UUID, enabled: bool, primary: bool) -> bool:
        with self.session() as db:
            result = db.execute(
                update(Address)
                .where(Address.id == address_id)
                .values(enabled=enabled, primary=primary)
            )
            return result.rowcount > 0

    def delete_address(self, address_id: uuid.UUID) -> bool:
        with self.session() as db:
            result = db.execute(delete(Address).where(Address.id == address_id))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # cached_bma_reports
    # ------------------------------------------------------------------

    def get_cached_report(
        self, primary_id: uuid.UUID, comparison_ids: Sequence[uuid.UUID]
    ) -> CachedBMAReport | None:
        _, key = comparison_key(comparison_ids)
        with self.session() as db:
            return db.scalar(
                select(CachedBMAReport).where(
                    CachedBMAReport.primary_address_id == primary_id,
                    CachedBMAReport.comparison_key == key,
                )
            )

    def upsert_cached_report(
        self,
        primary_id: uuid.UUID,
        comparison_ids: Sequence[uuid.UUID],
        generated_at: datetime,
        report: dict,
    ) -> None:
        sorted_ids, key = comparison_key(comparison_ids)

        def _write(db: Session) -> None:
            cached = db.scalar(
                select(CachedBMAReport).where(
                    CachedBMAReport.primary_address_id == primary_id,
                    CachedBMAReport.comparison_key == key,
                )
            )
            if cached is None:
                cached = CachedBMAReport(primary_address_id=primary_id, comparison_key=key)
                db.add(cached)
            cached.comparison_address_ids = sorted_ids
            cached.generated_at = generated_at
            cached.report = report

        try:
            with self.session() as db:
                _write(db)
            return
        except StoreError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise

        # Lost the insert race on the unique key; overwrite the winner.
        with self.session() as db:
            _write(db)

    def delete_cached_report(
        self, primary_id: uuid.UUID, comparison_ids: Sequence[uuid.UUID]
    ) -> int:
        _, key = comparison_key(comparison_ids)
        with self.session() as db:
            result = db.execute(
                delete(CachedBMAReport).where(
                    CachedBMAReport.primary_address_id == primary_id,
                    CachedBMAReport.comparison_key == key,
                )
            )
            return result.rowcount

    def delete_all_cached_reports(self) -> int:
        with self.session() as db:
            return db.execute(delete(CachedBMAReport)).rowcount

    # ------------------------------------------------------------------
    # llm_instructions
    # ------------------------------------------------------------------

    def get_instructions(self) -> LLMInstructions | None:
        with self.session() as db:
            return db.scalars(
                select(LLMInstructions).order_by(LLMInstructions.updated_at.desc())
            ).first()

    def replace_instructions(self, instructions: str, updated_at: datetime | None = None) -> None:
        """Delete every instructions document and insert a single new one."""
        with self.session() as db:
            db.execute(delete(LLMInstructions))
            db.add(LLMInstructions(instructions=instructions, updated_at=updated_at or utcnow()))
