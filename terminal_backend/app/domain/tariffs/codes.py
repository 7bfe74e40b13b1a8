"""
Tariff code generation.

Codes look like TR-ST-2024-001: type prefix, year, then a 3-digit sequence
scoped to that prefix and year. Numbers are issued from a counter row per
namespace, incremented with a single UPDATE ... RETURNING so two writers can
never read the same value. The first code of a namespace seeds the counter
from the highest code already present.
"""

from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from terminal_backend.app.models.tariff import Tariff, utc_today
from terminal_backend.app.models.tariff_enums import TariffType
from terminal_backend.app.models.tariff_sequence import TariffCodeSequence

TARIFF_CODE_PREFIXES: Dict[TariffType, str] = {
    TariffType.GATE_IN: "TR-GI",
    TariffType.GATE_OUT: "TR-GO",
    TariffType.STORAGE: "TR-ST",
    TariffType.HANDLING: "TR-HD",
    TariffType.LIFT_ON_LIFT_OFF: "TR-LL",
    TariffType.WEIGHING: "TR-WG",
    TariffType.INSPECTION: "TR-IN",
    TariffType.REPAIR: "TR-RP",
    TariffType.CLEANING: "TR-CL",
    TariffType.FUMIGATION: "TR-FM",
    TariffType.REEFER_MONITORING: "TR-RF",
    TariffType.DEMURRAGE: "TR-DM",
    TariffType.DETENTION: "TR-DT",
    TariffType.DOCUMENTATION: "TR-DC",
    TariffType.SPECIAL_HANDLING: "TR-SH",
}


def code_namespace(tariff_type: TariffType, year: int) -> str:
    return f"{TARIFF_CODE_PREFIXES.get(tariff_type, 'TR')}-{year}"


def format_tariff_code(namespace: str, sequence: int) -> str:
    return f"{namespace}-{sequence:03d}"


def parse_sequence(tariff_code: str, namespace: str) -> Optional[int]:
    """Sequence number of `tariff_code` if it belongs to `namespace`."""
    prefix = f"{namespace}-"
    if not tariff_code.startswith(prefix):
        return None
    suffix = tariff_code[len(prefix):]
    return int(suffix) if suffix.isdigit() else None


async def _max_existing_sequence(db: AsyncSession, namespace: str) -> int:
    result = await db.execute(
        select(Tariff.tariff_code).where(Tariff.tariff_code.like(f"{namespace}-%"))
    )
    numbers = [parse_sequence(code, namespace) for code in result.scalars().all()]
    return max((n for n in numbers if n is not None), default=0)


async def next_sequence(db: AsyncSession, namespace: str) -> int:
    """
    Issue the next number for `namespace` inside the caller's transaction.

    Raises:
        IntegrityError: (on flush/commit) if a concurrent writer seeded the
            same namespace first; the caller retries its unit of work.
    """
    result = await db.execute(
        update(TariffCodeSequence)
        .where(TariffCodeSequence.namespace == namespace)
        .values(last_value=TariffCodeSequence.last_value + 1)
        .returning(TariffCodeSequence.last_value)
        .execution_options(synchronize_session=False)
    )
    value = result.scalar_one_or_none()
    if value is not None:
        return value

    value = await _max_existing_sequence(db, namespace) + 1
    db.add(TariffCodeSequence(namespace=namespace, last_value=value))
    await db.flush()
    return value


async def generate_tariff_code(db: AsyncSession, tariff_type: TariffType, year: Optional[int] = None) -> str:
    """
    Generate the next unique tariff code for `tariff_type`.

    Args:
        db: Database session (the number is only consumed if the caller commits)
        tariff_type: Type whose prefix scopes the sequence
        year: Year segment, defaults to the current UTC year

    Returns:
        Code such as "TR-ST-2024-001"
    """
    namespace = code_namespace(tariff_type, year or utc_today().year)
    sequence = await next_sequence(db, namespace)
    return format_tariff_code(namespace, sequence)
