"""
Tariff Store.

Read side of the tariff engine: lookups and composable predicate search.
Writes go through TariffService so lifecycle rules always apply.
"""

from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func, or_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from terminal_backend.app.core.config import settings
from terminal_backend.app.core.exceptions import ResourceNotFoundError
from terminal_backend.app.models.tariff import Tariff, utc_now, utc_today
from terminal_backend.app.models.tariff_enums import TariffStatus, TariffType
from terminal_backend.app.schemas.tariff import TariffSearchFilters


def active_on(on):
    """SQL predicate mirroring Tariff.is_active_on."""
    return (
        (Tariff.status == TariffStatus.ACTIVE)
        & (Tariff.effective_date <= on)
        & (Tariff.expiry_date.is_(None) | (Tariff.expiry_date >= on))
    )


def expiring_between(start, end):
    return (
        (Tariff.status == TariffStatus.ACTIVE)
        & Tariff.expiry_date.is_not(None)
        & (Tariff.expiry_date >= start)
        & (Tariff.expiry_date <= end)
    )


class TariffStore:

    @staticmethod
    async def get_by_id(db: AsyncSession, tariff_id: str) -> Tariff:
        """
        Raises:
            ResourceNotFoundError: No tariff with this id
        """
        tariff = await db.get(Tariff, tariff_id)
        if not tariff:
            raise ResourceNotFoundError("Tariff", tariff_id)
        return tariff

    @staticmethod
    async def get_for_update(db: AsyncSession, tariff_id: str) -> Tariff:
        """
        Load a tariff for a read-then-write unit of work.

        The row is locked until commit where the backend supports it, and
        the identity map copy is refreshed so validation sees committed state.

        Raises:
            ResourceNotFoundError: No tariff with this id
        """
        tariff = await db.get(Tariff, tariff_id, with_for_update=True, populate_existing=True)
        if not tariff:
            raise ResourceNotFoundError("Tariff", tariff_id)
        return tariff

    @staticmethod
    async def get_by_code(db: AsyncSession, tariff_code: str) -> Tariff:
        """
        Raises:
            ResourceNotFoundError: No tariff with this code
        """
        result = await db.execute(select(Tariff).where(Tariff.tariff_code == tariff_code))
        tariff = result.scalar_one_or_none()
        if not tariff:
            raise ResourceNotFoundError("Tariff", tariff_code, field="code")
        return tariff

    @staticmethod
    async def list_all(db: AsyncSession) -> List[Tariff]:
        result = await db.execute(select(Tariff).order_by(desc(Tariff.created_at)))
        return list(result.scalars().all())

    @staticmethod
    async def search(db: AsyncSession, filters: TariffSearchFilters) -> List[Tariff]:
        """
        Search tariffs with optional filtering.

        Every set filter narrows the result (AND). Results are ordered by
        effective date, most recent first.
        """
        query = select(Tariff)
        today = utc_today()

        if filters.tariff_type:
            query = query.where(Tariff.tariff_type == filters.tariff_type)

        if filters.status:
            query = query.where(Tariff.status == filters.status)

        if filters.pricing_model:
            query = query.where(Tariff.pricing_model == filters.pricing_model)

        if filters.client_id:
            query = query.where(Tariff.client_id == filters.client_id)

        if filters.effective_date_after:
            query = query.where(Tariff.effective_date >= filters.effective_date_after)

        if filters.effective_date_before:
            query = query.where(Tariff.effective_date <= filters.effective_date_before)

        if filters.expiry_date_after:
            query = query.where(Tariff.expiry_date >= filters.expiry_date_after)

        if filters.expiry_date_before:
            query = query.where(Tariff.expiry_date <= filters.expiry_date_before)

        if filters.base_price_min is not None:
            query = query.where(Tariff.base_price >= filters.base_price_min)

        if filters.base_price_max is not None:
            query = query.where(Tariff.base_price <= filters.base_price_max)

        if filters.currency:
            query = query.where(Tariff.currency == filters.currency.upper())

        if filters.unit_of_measure:
            query = query.where(Tariff.unit_of_measure == filters.unit_of_measure)

        if filters.is_active:
            query = query.where(active_on(today))

        if filters.is_expiring:
            days = filters.expiring_within_days
            if days is None:
                days = settings.expiring_window_days
            query = query.where(expiring_between(today, today + timedelta(days=days)))

        if filters.search_text:
            pattern = f"%{filters.search_text}%"
            query = query.where(or_(
                Tariff.tariff_code.ilike(pattern),
                Tariff.tariff_name.ilike(pattern),
                Tariff.description.ilike(pattern),
                Tariff.client_name.ilike(pattern),
            ))

        query = query.order_by(desc(Tariff.effective_date), desc(Tariff.created_at))

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def list_general(db: AsyncSession) -> List[Tariff]:
        """Active tariffs without a client, grouped by type."""
        result = await db.execute(
            select(Tariff)
            .where(Tariff.client_id.is_(None), Tariff.status == TariffStatus.ACTIVE)
            .order_by(Tariff.tariff_type, desc(Tariff.effective_date))
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_statistics(
        db: AsyncSession,
        period_days: Optional[int] = None,
        tariff_type: Optional[TariffType] = None,
        client_id: Optional[str] = None,
    ) -> dict:
        """
        Aggregate counts and prices over tariffs matching the filters.

        Args:
            period_days: Only tariffs created within the last N days
            tariff_type: Only tariffs of this type
            client_id: Only tariffs of this client
        """
        conditions = []
        if period_days:
            conditions.append(Tariff.created_at >= utc_now() - timedelta(days=period_days))
        if tariff_type:
            conditions.append(Tariff.tariff_type == tariff_type)
        if client_id:
            conditions.append(Tariff.client_id == client_id)

        totals = await db.execute(
            select(func.count(Tariff.id), func.avg(Tariff.base_price)).where(*conditions)
        )
        total_count, avg_price = totals.one()

        by_status = await db.execute(
            select(Tariff.status, func.count(Tariff.id))
            .where(*conditions)
            .group_by(Tariff.status)
            .order_by(desc(func.count(Tariff.id)))
        )

        by_type = await db.execute(
            select(Tariff.tariff_type, func.count(Tariff.id), func.avg(Tariff.base_price))
            .where(*conditions)
            .group_by(Tariff.tariff_type)
            .order_by(desc(func.count(Tariff.id)))
        )

        today = utc_today()
        expiring = await db.execute(
            select(func.count(Tariff.id)).where(
                expiring_between(today, today + timedelta(days=settings.expiring_window_days))
            )
        )

        return {
            "totals": {
                "total_tariffs": total_count or 0,
                "avg_base_price": _money(avg_price),
                "expiring_count": expiring.scalar() or 0,
            },
            "by_status": [{"status": status, "count": count} for status, count in by_status.all()],
            "by_type": [
                {"tariff_type": tariff_type, "count": count, "avg_price": _money(avg)}
                for tariff_type, count, avg in by_type.all()
            ],
        }


def _money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(Decimal("0.01"))
