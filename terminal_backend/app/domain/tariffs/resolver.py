"""
Tariff Applicability Resolver.

Responsible for picking the single tariff that applies to a billing request.
Follows priority:
1. Client-specific active tariff covering the service date
2. General active tariff covering the service date
Within a priority level the most recent effective date wins.
"""

from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select, case, desc
from sqlalchemy.ext.asyncio import AsyncSession

from terminal_backend.app.domain.tariffs.store import active_on
from terminal_backend.app.models.tariff import Tariff, utc_today
from terminal_backend.app.models.tariff_enums import TariffType


def select_applicable(candidates: Sequence[Tariff], container_type: Optional[str] = None) -> Optional[Tariff]:
    """
    Pick the winner from priority-ordered candidates.

    With a container type, the first candidate whose conditions allow it
    wins; if none does, the plain first candidate is returned.
    """
    if not candidates:
        return None

    if container_type:
        for tariff in candidates:
            conditions = tariff.conditions
            if conditions is None or conditions.allows_container_type(container_type):
                return tariff

    return candidates[0]


class TariffResolver:

    @staticmethod
    async def resolve_applicable_tariff(
        db: AsyncSession,
        tariff_type: TariffType,
        client_id: Optional[str] = None,
        container_type: Optional[str] = None,
        service_date: Optional[date] = None,
    ) -> Optional[Tariff]:
        """
        Find the tariff that applies to a request.

        Returns:
            The winning tariff, or None when nothing applies (a normal outcome)
        """
        on = service_date or utc_today()

        query = select(Tariff).where(
            Tariff.tariff_type == tariff_type,
            active_on(on)
        )

        if client_id:
            query = query.where(Tariff.client_id.is_(None) | (Tariff.client_id == client_id))
            # client-specific first
            query = query.order_by(case((Tariff.client_id.is_(None), 1), else_=0))
        else:
            query = query.where(Tariff.client_id.is_(None))

        query = query.order_by(desc(Tariff.effective_date), desc(Tariff.created_at))

        result = await db.execute(query)
        return select_applicable(list(result.scalars().all()), container_type)
