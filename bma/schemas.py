"""Pydantic schemas for the BMA API.

JSON is camelCase on the wire (the extension and the frontend both speak it);
attributes are snake_case in Python.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing to camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class LLMOutputModel(CamelModel):
    """Model parsed from LLM replies: a JSON null means the field's zero value."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


# =============================================================================
# Property data
# =============================================================================


class PropertyDetails(LLMOutputModel):
    """Structured attributes extracted from a listing page."""

    address: str = ""
    price: float = 0
    bedrooms: int = 0
    bathrooms: float = 0
    square_footage: int = 0
    year_built: int = 0
    property_type: str = ""
    lot_size: str = ""
    mls_number: str = ""
    days_on_market: int = 0
    last_price_change: float = 0
    description: str = ""


class ComparisonValue(LLMOutputModel):
    """One comparison property's value for a compared feature."""

    address: str = ""
    value: str = ""


class FeatureComparison(LLMOutputModel):
    """Per-feature comparison between the primary and each comparison property."""

    feature: str = ""
    primary_value: str = ""
    comparison: list[ComparisonValue] = Field(default_factory=list)
    analysis: str = ""


class DetailedAnalysis(LLMOutputModel):
    """Multi-section analysis produced by the analysis generator."""

    primary_property_details: PropertyDetails = Field(default_factory=PropertyDetails)
    comparison_details: list[PropertyDetails] = Field(default_factory=list)
    price_analysis: str = ""
    feature_comparison: list[FeatureComparison] = Field(default_factory=list)
    market_trends: str = ""
    recommendation: str = ""


# =============================================================================
# Addresses
# =============================================================================


class AddressOut(CamelModel):
    """An address record as returned by the API."""

    id: UUID
    raw_page_id: UUID | None = None
    address_str: str
    enabled: bool = False
    primary: bool = False


class AddressWithDetails(CamelModel):
    """An address joined with the headline facts of its listing."""

    id: UUID
    address_str: str
    enabled: bool
    primary: bool
    price: float | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    square_footage: int | None = None
    property_type: str | None = None
    year_built: int | None = None


class AddressCreate(CamelModel):
    """Body for manual address creation."""

    address_str: str = Field(min_length=1)
    raw_page_id: UUID | None = None
    enabled: bool = False
    primary: bool = False


class AddressUpdate(CamelModel):
    """Flags applied to an address. Absent fields mean false, not "unchanged"."""

    enabled: bool = False
    primary: bool = False


# =============================================================================
# Ingestion
# =============================================================================


class PageDataIn(CamelModel):
    """Page data posted by the browser extension."""

    url: str = ""
    content: str = Field(min_length=1)


class IngestResponse(BaseModel):
    message: str
    upserted: bool


# =============================================================================
# Reports
# =============================================================================


class BMAReport(CamelModel):
    """Comparison report between the primary and the enabled comparison addresses."""

    primary_address: AddressOut | None = None
    comparison_addresses: list[AddressOut] | None = None
    opinion: str
    detailed_analysis: DetailedAnalysis | None = None


# =============================================================================
# LLM instructions and generic responses
# =============================================================================


class InstructionsIn(BaseModel):
    instructions: str


class InstructionsResponse(BaseModel):
    instructions: str


class MessageResponse(BaseModel):
    message: str


class StatusResponse(BaseModel):
    status: str


class HealthResponse(BaseModel):
    status: str
    service: str | None = None
    database: str | None = None


class ErrorResponse(BaseModel):
    error: str
