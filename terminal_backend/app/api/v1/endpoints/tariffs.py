"""
Tariff API Endpoints.

Thin HTTP edge over the tariff engine: billing workflows resolve and price
tariffs, operator tooling drives the lifecycle.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Path, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from terminal_backend.app.core.dependencies import get_actor
from terminal_backend.app.db.session import get_db
from terminal_backend.app.domain.tariffs.pricing import PriceBreakdown
from terminal_backend.app.domain.tariffs.store import TariffStore
from terminal_backend.app.domain.tariffs.tariff_service import TariffService
from terminal_backend.app.models.tariff_enums import PricingModel, TariffStatus, TariffType, UnitOfMeasure
from terminal_backend.app.schemas.tariff import (
    AuditLogResponse,
    PriceRequest,
    TariffCreate,
    TariffDeactivate,
    TariffResponse,
    TariffSearchFilters,
    TariffStatisticsResponse,
    TariffUpdate,
)
from terminal_backend.app.services.audit import get_audit_trail

router = APIRouter(prefix="/tariffs", tags=["Billing - Tariffs"])


def search_filters(
    tariff_type: Optional[TariffType] = Query(None),
    status: Optional[TariffStatus] = Query(None),
    pricing_model: Optional[PricingModel] = Query(None),
    client_id: Optional[str] = Query(None),
    effective_date_after: Optional[date] = Query(None),
    effective_date_before: Optional[date] = Query(None),
    expiry_date_after: Optional[date] = Query(None),
    expiry_date_before: Optional[date] = Query(None),
    base_price_min: Optional[float] = Query(None, ge=0),
    base_price_max: Optional[float] = Query(None, ge=0),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    unit_of_measure: Optional[UnitOfMeasure] = Query(None),
    is_active: Optional[bool] = Query(None),
    is_expiring: Optional[bool] = Query(None),
    search_text: Optional[str] = Query(None, min_length=1),
) -> TariffSearchFilters:
    return TariffSearchFilters(
        tariff_type=tariff_type,
        status=status,
        pricing_model=pricing_model,
        client_id=client_id,
        effective_date_after=effective_date_after,
        effective_date_before=effective_date_before,
        expiry_date_after=expiry_date_after,
        expiry_date_before=expiry_date_before,
        base_price_min=base_price_min,
        base_price_max=base_price_max,
        currency=currency,
        unit_of_measure=unit_of_measure,
        is_active=is_active,
        is_expiring=is_expiring,
        search_text=search_text,
    )


@router.post("", response_model=TariffResponse, status_code=status.HTTP_201_CREATED)
async def create_tariff(
    tariff_data: TariffCreate,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new tariff in DRAFT status.
    """
    tariff = await TariffService.create_tariff(db, tariff_data, actor)
    return TariffResponse.model_validate(tariff)


@router.get("", response_model=List[TariffResponse])
async def list_tariffs(db: AsyncSession = Depends(get_db)):
    """
    List all tariffs, newest first.
    """
    return await TariffStore.list_all(db)


@router.get("/search", response_model=List[TariffResponse])
async def search_tariffs(
    filters: TariffSearchFilters = Depends(search_filters),
    db: AsyncSession = Depends(get_db)
):
    """
    Search tariffs by any combination of filters.
    """
    return await TariffStore.search(db, filters)


@router.get("/statistics", response_model=TariffStatisticsResponse)
async def get_tariff_statistics(
    period: Optional[int] = Query(None, ge=1, description="Only tariffs created in the last N days"),
    tariff_type: Optional[TariffType] = Query(None),
    client_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Tariff counts by status and type, average base price, expiring count.
    """
    return await TariffStore.get_statistics(db, period_days=period, tariff_type=tariff_type, client_id=client_id)


@router.get("/active", response_model=List[TariffResponse])
async def list_active_tariffs(db: AsyncSession = Depends(get_db)):
    """
    Tariffs that are ACTIVE and inside their validity window today.
    """
    return await TariffStore.search(db, TariffSearchFilters(is_active=True))


@router.get("/expiring", response_model=List[TariffResponse])
async def list_expiring_tariffs(
    days_ahead: int = Query(30, ge=0, le=365, description="Look-ahead window in days"),
    db: AsyncSession = Depends(get_db)
):
    """
    Active tariffs whose expiry date falls within the next `days_ahead` days.
    """
    return await TariffStore.search(db, TariffSearchFilters(is_expiring=True, expiring_within_days=days_ahead))


@router.get("/general", response_model=List[TariffResponse])
async def list_general_tariffs(db: AsyncSession = Depends(get_db)):
    """
    Active tariffs that apply to every client.
    """
    return await TariffStore.list_general(db)


@router.get("/applicable", response_model=TariffResponse)
async def get_applicable_tariff(
    tariff_type: TariffType = Query(...),
    client_id: Optional[str] = Query(None),
    container_type: Optional[str] = Query(None),
    service_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    Resolve the tariff that applies to a billing request.

    Returns 404 when no tariff applies.
    """
    tariff = await TariffService.resolve_applicable_tariff(
        db, tariff_type, client_id=client_id, container_type=container_type, service_date=service_date
    )
    if tariff is None:
        raise HTTPException(status_code=404, detail="No applicable tariff found")
    return TariffResponse.model_validate(tariff)


@router.get("/type/{tariff_type}", response_model=List[TariffResponse])
async def list_tariffs_by_type(tariff_type: TariffType, db: AsyncSession = Depends(get_db)):
    return await TariffStore.search(db, TariffSearchFilters(tariff_type=tariff_type))


@router.get("/status/{tariff_status}", response_model=List[TariffResponse])
async def list_tariffs_by_status(tariff_status: TariffStatus, db: AsyncSession = Depends(get_db)):
    return await TariffStore.search(db, TariffSearchFilters(status=tariff_status))


@router.get("/client/{client_id}", response_model=List[TariffResponse])
async def list_tariffs_by_client(client_id: str, db: AsyncSession = Depends(get_db)):
    return await TariffStore.search(db, TariffSearchFilters(client_id=client_id))


@router.get("/code/{tariff_code}", response_model=TariffResponse)
async def get_tariff_by_code(tariff_code: str, db: AsyncSession = Depends(get_db)):
    tariff = await TariffStore.get_by_code(db, tariff_code)
    return TariffResponse.model_validate(tariff)


@router.post("/{tariff_id}/calculate", response_model=PriceBreakdown)
async def calculate_price(
    price_request: PriceRequest,
    tariff_id: str = Path(..., description="Tariff ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Price a quantity against an active tariff.
    """
    return await TariffService.calculate_price(
        db,
        tariff_id,
        price_request.quantity,
        container_type=price_request.container_type,
        weight=price_request.weight,
        service_date=price_request.service_date,
        time_slot=price_request.time_slot,
    )


@router.get("/{tariff_id}/audit", response_model=List[AuditLogResponse])
async def get_tariff_audit_trail(
    tariff_id: str = Path(..., description="Tariff ID"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """
    Audit entries for a tariff, most recent first.
    """
    return await get_audit_trail(db, tariff_id=tariff_id, limit=limit)


@router.get("/{tariff_id}", response_model=TariffResponse)
async def get_tariff(tariff_id: str = Path(..., description="Tariff ID"), db: AsyncSession = Depends(get_db)):
    tariff = await TariffStore.get_by_id(db, tariff_id)
    return TariffResponse.model_validate(tariff)


@router.put("/{tariff_id}", response_model=TariffResponse)
async def update_tariff(
    patch: TariffUpdate,
    tariff_id: str = Path(..., description="Tariff ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Partially update a tariff. Status changes follow the lifecycle table.
    """
    tariff = await TariffService.update_tariff(db, tariff_id, patch, actor)
    return TariffResponse.model_validate(tariff)


@router.delete("/{tariff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tariff(
    tariff_id: str = Path(..., description="Tariff ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a tariff. Active tariffs must be deactivated first.
    """
    await TariffService.delete_tariff(db, tariff_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{tariff_id}/activate", response_model=TariffResponse)
async def activate_tariff(
    tariff_id: str = Path(..., description="Tariff ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Activate a DRAFT tariff. Fails with 409 if an active tariff overlaps.
    """
    tariff = await TariffService.activate_tariff(db, tariff_id, actor)
    return TariffResponse.model_validate(tariff)


@router.put("/{tariff_id}/deactivate", response_model=TariffResponse)
async def deactivate_tariff(
    body: TariffDeactivate,
    tariff_id: str = Path(..., description="Tariff ID"),
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db)
):
    """
    Deactivate an ACTIVE tariff, recording the reason.
    """
    tariff = await TariffService.deactivate_tariff(db, tariff_id, body.reason, actor)
    return TariffResponse.model_validate(tariff)
