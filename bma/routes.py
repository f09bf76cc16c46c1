"""HTTP routes for the extension and the frontend."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request

from .schemas import (
    AddressCreate,
    AddressUpdate,
    AddressWithDetails,
    BMAReport,
    ErrorResponse,
    IngestResponse,
    InstructionsIn,
    InstructionsResponse,
    MessageResponse,
    PageDataIn,
    StatusResponse,
)
from .service import BMAService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)


def get_service(request: Request) -> BMAService:
    """Dependency returning the service wired into the application."""
    return request.app.state.service


# =============================================================================
# Extension
# =============================================================================


@router.post("/extension/page-data", response_model=IngestResponse)
async def receive_page_data(payload: PageDataIn, service: BMAService = Depends(get_service)):
    """Store a listing page and the property details extracted from it."""
    upserted = await service.ingest(payload.url, payload.content)
    return IngestResponse(
        message="Page data processed and property details extracted.",
        upserted=upserted,
    )


# =============================================================================
# Addresses
# =============================================================================


@router.get(
    "/addresses",
    response_model=list[AddressWithDetails],
    response_model_exclude_none=True,
)
async def list_addresses(service: BMAService = Depends(get_service)):
    """All addresses with the headline facts of their listings."""
    return service.list_addresses()


@router.post("/addresses", response_model=MessageResponse)
async def create_address(payload: AddressCreate, service: BMAService = Depends(get_service)):
    service.create_address(
        payload.address_str,
        raw_page_id=payload.raw_page_id,
        enabled=payload.enabled,
        primary=payload.primary,
    )
    return MessageResponse(message="Address created")


@router.patch(
    "/addresses/{address_id}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse}},
)
async def update_address(
    address_id: UUID,
    payload: AddressUpdate,
    service: BMAService = Depends(get_service),
):
    """Toggle enabled, or make this address the primary."""
    service.update_address(address_id, enabled=payload.enabled, primary=payload.primary)
    return MessageResponse(message="Address updated")


@router.delete(
    "/addresses/{address_id}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse}},
)
async def delete_address(address_id: UUID, service: BMAService = Depends(get_service)):
    service.delete_address(address_id)
    return MessageResponse(message="Address deleted successfully")


# =============================================================================
# BMA report
# =============================================================================


@router.get("/bma-report", response_model=BMAReport)
async def get_bma_report(service: BMAService = Depends(get_service)):
    """The cached report when fresh, otherwise a newly generated one."""
    return await service.get_report()


@router.post("/bma-report/refresh", response_model=BMAReport)
async def refresh_bma_report(service: BMAService = Depends(get_service)):
    """Drop the cached report for the current selection and regenerate it."""
    return await service.get_report(force_refresh=True)


# =============================================================================
# LLM instructions
# =============================================================================


@router.get("/llm-instructions", response_model=InstructionsResponse)
async def get_llm_instructions(service: BMAService = Depends(get_service)):
    return InstructionsResponse(instructions=service.get_instructions())


@router.post("/llm-instructions", response_model=StatusResponse)
async def update_llm_instructions(
    payload: InstructionsIn, service: BMAService = Depends(get_service)
):
    """Replace the analysis instructions; every cached report is invalidated."""
    service.update_instructions(payload.instructions)
    return StatusResponse(status="success")
