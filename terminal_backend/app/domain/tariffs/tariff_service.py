"""
Tariff Service (Domain Logic).

Pricing and lifecycle engine for tariffs. Every mutating operation:
1. Runs as one unit of work (validate, write, audit, commit)
2. Takes the acting operator explicitly
3. Publishes a domain event only after the commit succeeded

Serializability: making a tariff ACTIVE first bumps the scope-lock row of
its (type, client scope), and code generation bumps the per-namespace
counter row. Competing writers block on those rows until commit, so the
overlap check and the sequence read always see the latest committed state.
The tariff row itself is read with a row lock and written with a version
check. A lost race surfaces as IntegrityError (duplicate code) or
StaleDataError (tariff changed since it was read) and the unit of work is
retried against the fresh state.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession

from terminal_backend.app.core.config import settings
from terminal_backend.app.core.exceptions import AppException, InvalidArgumentError, InvalidStateError
from terminal_backend.app.domain.tariffs.codes import generate_tariff_code
from terminal_backend.app.domain.tariffs.lifecycle import scope_key, validate_status_transition
from terminal_backend.app.domain.tariffs.pricing import PriceBreakdown, calculate_tariff_price
from terminal_backend.app.domain.tariffs.resolver import TariffResolver
from terminal_backend.app.domain.tariffs.store import TariffStore
from terminal_backend.app.domain.tariffs.structures import (
    check_structure_matches,
    default_structure,
    dump_config,
    load_pricing_structure,
)
from terminal_backend.app.models.tariff import Tariff, utc_now
from terminal_backend.app.models.tariff_enums import TariffStatus, TariffType
from terminal_backend.app.models.tariff_sequence import TariffScopeLock
from terminal_backend.app.schemas.tariff import TariffCreate, TariffUpdate
from terminal_backend.app.services.audit import AuditAction, log_tariff_event
from terminal_backend.app.services.tariff_events import TariffEvent, event_payload, publish_tariff_event

logger = logging.getLogger("terminal_billing.tariffs")

WRITE_RETRY_ATTEMPTS = 3

# Changes to these fields append a version history entry
SIGNIFICANT_FIELDS = ("base_price", "pricing_structure", "applicable_conditions", "discount_policy")

# Changes to these fields on an ACTIVE tariff re-run overlap detection
SCOPE_FIELDS = ("tariff_type", "client_id", "effective_date", "expiry_date")

# Columns that may not be patched to null
REQUIRED_FIELDS = (
    "tariff_name", "description", "tariff_type", "pricing_model", "unit_of_measure",
    "effective_date", "base_price", "currency", "pricing_structure", "status",
)

CONFIG_FIELDS = ("pricing_structure", "applicable_conditions", "discount_policy", "tax_information")

# Status changes made through a plain update also announce the lifecycle step
STATUS_EVENTS = {
    TariffStatus.ACTIVE: TariffEvent.ACTIVATED,
    TariffStatus.INACTIVE: TariffEvent.DEACTIVATED,
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _differs(old: Any, new: Any) -> bool:
    if isinstance(old, Decimal) or isinstance(new, Decimal):
        if old is None or new is None:
            return old is not new
        return Decimal(old) != Decimal(new)
    return _jsonable(old) != _jsonable(new)


def _check_window(effective_date: date, expiry_date: Optional[date]) -> None:
    if expiry_date is not None and expiry_date <= effective_date:
        raise InvalidArgumentError(
            "Expiry date must be after effective date",
            details={"effective_date": effective_date.isoformat(), "expiry_date": expiry_date.isoformat()}
        )


def _check_charge_limits(minimum: Optional[Decimal], maximum: Optional[Decimal]) -> None:
    if minimum is not None and maximum is not None and minimum > maximum:
        raise InvalidArgumentError(
            "Minimum charge must not exceed maximum charge",
            details={"minimum_charge": str(minimum), "maximum_charge": str(maximum)}
        )


class TariffService:

    # ------------------------------------------------------------------
    # Unit of work helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _commit_unit_of_work(db: AsyncSession, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run `operation` and commit, retrying when a concurrent writer won the race.

        Domain errors roll the transaction back and propagate unchanged.
        """
        for attempt in range(1, WRITE_RETRY_ATTEMPTS + 1):
            try:
                result = await operation()
                await db.commit()
            except AppException:
                await db.rollback()
                raise
            except (IntegrityError, StaleDataError) as exc:
                await db.rollback()
                if attempt == WRITE_RETRY_ATTEMPTS:
                    logger.error("Tariff write conflict persisted after %d attempts: %s", attempt, exc)
                    raise InvalidStateError(
                        "Concurrent tariff write conflict, retry the operation"
                    ) from exc
                logger.info("Tariff write conflict, retrying (attempt %d)", attempt)
                continue
            return result

    @staticmethod
    async def _lock_scope(db: AsyncSession, tariff_type: TariffType, client_id: Optional[str]) -> None:
        key = scope_key(tariff_type, client_id)
        result = await db.execute(
            update(TariffScopeLock)
            .where(TariffScopeLock.scope_key == key)
            .values(version=TariffScopeLock.version + 1)
            .returning(TariffScopeLock.version)
            .execution_options(synchronize_session=False)
        )
        if result.scalar_one_or_none() is None:
            db.add(TariffScopeLock(scope_key=key, version=1))
            await db.flush()

    @staticmethod
    async def find_overlapping_tariffs(
        db: AsyncSession,
        tariff_type: TariffType,
        client_id: Optional[str],
        effective_date: date,
        expiry_date: Optional[date],
        exclude_id: Optional[str] = None,
    ) -> List[Tariff]:
        """
        Active tariffs in the same (type, client scope) whose window intersects
        [effective_date, expiry_date]. A missing expiry is open-ended.
        """
        query = select(Tariff).where(
            Tariff.tariff_type == tariff_type,
            Tariff.status == TariffStatus.ACTIVE,
        )

        if exclude_id:
            query = query.where(Tariff.id != exclude_id)

        if client_id:
            query = query.where(Tariff.client_id == client_id)
        else:
            query = query.where(Tariff.client_id.is_(None))

        # a.start <= b.end AND b.start <= a.end
        if expiry_date is not None:
            query = query.where(Tariff.effective_date <= expiry_date)
        query = query.where(Tariff.expiry_date.is_(None) | (Tariff.expiry_date >= effective_date))

        query = query.order_by(Tariff.effective_date, Tariff.tariff_code)

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def _ensure_no_overlap(
        db: AsyncSession,
        tariff: Tariff,
        tariff_type: TariffType,
        client_id: Optional[str],
        effective_date: date,
        expiry_date: Optional[date],
    ) -> None:
        await TariffService._lock_scope(db, tariff_type, client_id)
        conflicts = await TariffService.find_overlapping_tariffs(
            db, tariff_type, client_id, effective_date, expiry_date, exclude_id=tariff.id
        )
        if conflicts:
            conflict = conflicts[0]
            logger.warning(
                "Activation of %s blocked by overlapping tariff %s", tariff.tariff_code, conflict.tariff_code
            )
            raise InvalidStateError(
                f"Overlapping tariff found: {conflict.tariff_code}. "
                "Deactivate existing tariff or adjust dates before activating.",
                tariff_code=conflict.tariff_code,
                details={
                    "candidate_code": tariff.tariff_code,
                    "conflicting_codes": [t.tariff_code for t in conflicts],
                }
            )

    @staticmethod
    async def _apply_patch(
        db: AsyncSession,
        tariff: Tariff,
        changes: Dict[str, Any],
        actor: str,
        change_reason: str,
    ) -> List[Dict[str, Any]]:
        """
        Validate and apply `changes` to `tariff`.

        Returns:
            Field-level diff entries ({field, old_value, new_value})
        """
        for field in REQUIRED_FIELDS:
            if field in changes and changes[field] is None:
                raise InvalidArgumentError(f"Field '{field}' cannot be cleared", details={"field": field})

        if "status" in changes:
            validate_status_transition(tariff.tariff_code, tariff.status, changes["status"])

        effective_date = changes.get("effective_date", tariff.effective_date)
        expiry_date = changes["expiry_date"] if "expiry_date" in changes else tariff.expiry_date
        if "effective_date" in changes or "expiry_date" in changes:
            _check_window(effective_date, expiry_date)

        if "minimum_charge" in changes or "maximum_charge" in changes:
            _check_charge_limits(
                changes.get("minimum_charge", tariff.minimum_charge),
                changes.get("maximum_charge", tariff.maximum_charge),
            )

        if "pricing_model" in changes or "pricing_structure" in changes:
            pricing_model = changes.get("pricing_model", tariff.pricing_model)
            if "pricing_structure" in changes:
                structure = changes["pricing_structure"]
            else:
                structure = load_pricing_structure(pricing_model, tariff.pricing_structure)
            check_structure_matches(pricing_model, structure)

        resulting_status = changes.get("status", tariff.status)
        if resulting_status == TariffStatus.ACTIVE and (
            "status" in changes or any(field in changes for field in SCOPE_FIELDS)
        ):
            await TariffService._ensure_no_overlap(
                db,
                tariff,
                changes.get("tariff_type", tariff.tariff_type),
                changes.get("client_id", tariff.client_id),
                effective_date,
                expiry_date,
            )

        diff = []
        for field, new_value in changes.items():
            old_value = tariff.meta_data if field == "metadata" else getattr(tariff, field)
            if _differs(old_value, new_value):
                diff.append({"field": field, "old_value": _jsonable(old_value), "new_value": _jsonable(new_value)})

        if any(field in changes for field in SIGNIFICANT_FIELDS):
            history = list(tariff.version_history or [])
            history.append({
                "version": f"v{len(history) + 1}",
                "change_date": utc_now().isoformat(),
                "changed_by": actor,
                "change_reason": change_reason,
                "changes": diff,
            })
            tariff.version_history = history

        for field, new_value in changes.items():
            if field in CONFIG_FIELDS:
                setattr(tariff, field, dump_config(new_value))
            elif field == "metadata":
                tariff.meta_data = new_value
            elif field == "currency":
                tariff.currency = new_value.upper()
            else:
                setattr(tariff, field, new_value)

        await db.flush()
        return diff

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    @staticmethod
    async def create_tariff(db: AsyncSession, data: TariffCreate, actor: str) -> Tariff:
        """
        Create a draft tariff with a freshly generated code.

        Raises:
            InvalidArgumentError: Expiry not after effective date, min > max
                charge, or a pricing structure that does not fit the model
        """
        logger.info("Creating tariff: %s", data.tariff_name)

        _check_window(data.effective_date, data.expiry_date)
        _check_charge_limits(data.minimum_charge, data.maximum_charge)
        structure = data.pricing_structure or default_structure(data.pricing_model)
        check_structure_matches(data.pricing_model, structure)

        async def operation():
            tariff_code = await generate_tariff_code(db, data.tariff_type)
            tariff = Tariff(
                tariff_code=tariff_code,
                tariff_name=data.tariff_name,
                description=data.description,
                tariff_type=data.tariff_type,
                status=TariffStatus.DRAFT,
                pricing_model=data.pricing_model,
                unit_of_measure=data.unit_of_measure,
                client_id=data.client_id,
                client_name=data.client_name,
                effective_date=data.effective_date,
                expiry_date=data.expiry_date,
                base_price=data.base_price,
                currency=(data.currency or settings.default_currency).upper(),
                minimum_charge=data.minimum_charge,
                maximum_charge=data.maximum_charge,
                pricing_structure=dump_config(structure),
                applicable_conditions=dump_config(data.applicable_conditions),
                discount_policy=dump_config(data.discount_policy),
                tax_information=dump_config(data.tax_information),
                version_history=[],
                notes=data.notes,
                meta_data=data.metadata,
            )
            db.add(tariff)
            await db.flush()
            await log_tariff_event(
                db, AuditAction.TARIFF_CREATED, actor, tariff,
                metadata={"tariff_name": tariff.tariff_name, "tariff_type": tariff.tariff_type.value}
            )
            return tariff

        tariff = await TariffService._commit_unit_of_work(db, operation)
        await db.refresh(tariff)

        await publish_tariff_event(
            TariffEvent.CREATED,
            event_payload(tariff, tariff_name=tariff.tariff_name, status=tariff.status.value)
        )
        logger.info("Tariff created: %s", tariff.tariff_code)
        return tariff

    @staticmethod
    async def update_tariff(
        db: AsyncSession,
        tariff_id: str,
        patch: TariffUpdate,
        actor: str,
        change_reason: Optional[str] = None,
    ) -> Tariff:
        """
        Apply a partial update.

        Status changes must follow the lifecycle table; a change that leaves
        the tariff ACTIVE with a new scope or window is overlap-checked.

        Raises:
            ResourceNotFoundError: Unknown id
            InvalidStateError: Illegal status transition or overlap
            InvalidArgumentError: Invalid dates, charges or structure
        """
        changes = {field: getattr(patch, field) for field in patch.model_fields_set}
        reason = changes.pop("change_reason", None) or change_reason or "Manual update via API"

        async def operation():
            tariff = await TariffStore.get_for_update(db, tariff_id)
            diff = await TariffService._apply_patch(db, tariff, changes, actor, reason)
            await log_tariff_event(
                db, AuditAction.TARIFF_UPDATED, actor, tariff,
                metadata={"fields": sorted(changes), "reason": reason}
            )
            return tariff, diff

        tariff, diff = await TariffService._commit_unit_of_work(db, operation)
        await db.refresh(tariff)

        await publish_tariff_event(TariffEvent.UPDATED, event_payload(tariff, changes=diff))
        if any(entry["field"] == "status" for entry in diff):
            lifecycle_event = STATUS_EVENTS.get(tariff.status)
            if lifecycle_event:
                await publish_tariff_event(
                    lifecycle_event, event_payload(tariff, status=tariff.status.value, reason=reason)
                )
        logger.info("Tariff updated: %s", tariff.tariff_code)
        return tariff

    @staticmethod
    async def activate_tariff(db: AsyncSession, tariff_id: str, actor: str) -> Tariff:
        """
        Move a draft tariff to ACTIVE.

        Raises:
            InvalidStateError: Tariff is not a draft, or an active tariff in
                the same scope overlaps its window (names the conflicting code)
        """
        async def operation():
            tariff = await TariffStore.get_for_update(db, tariff_id)
            if tariff.status != TariffStatus.DRAFT:
                raise InvalidStateError(
                    f"Cannot activate tariff {tariff.tariff_code} - status is {tariff.status.value}",
                    tariff_code=tariff.tariff_code,
                    details={"status": tariff.status.value}
                )
            await TariffService._apply_patch(
                db, tariff, {"status": TariffStatus.ACTIVE}, actor, "Activated"
            )
            await log_tariff_event(
                db, AuditAction.TARIFF_ACTIVATED, actor, tariff,
                metadata={"effective_date": tariff.effective_date.isoformat()}
            )
            return tariff

        tariff = await TariffService._commit_unit_of_work(db, operation)
        await db.refresh(tariff)

        await publish_tariff_event(
            TariffEvent.ACTIVATED,
            event_payload(
                tariff,
                effective_date=tariff.effective_date.isoformat(),
                expiry_date=tariff.expiry_date.isoformat() if tariff.expiry_date else None,
            )
        )
        logger.info("Tariff activated: %s", tariff.tariff_code)
        return tariff

    @staticmethod
    async def deactivate_tariff(db: AsyncSession, tariff_id: str, reason: str, actor: str) -> Tariff:
        """
        Move an ACTIVE tariff to INACTIVE, appending the reason to its notes.

        Raises:
            InvalidStateError: Tariff is not active
        """
        async def operation():
            tariff = await TariffStore.get_for_update(db, tariff_id)
            if tariff.status != TariffStatus.ACTIVE:
                raise InvalidStateError(
                    f"Cannot deactivate tariff {tariff.tariff_code} - status is {tariff.status.value}",
                    tariff_code=tariff.tariff_code,
                    details={"status": tariff.status.value}
                )
            notes = f"{tariff.notes}\n" if tariff.notes else ""
            await TariffService._apply_patch(
                db, tariff,
                {"status": TariffStatus.INACTIVE, "notes": f"{notes}Deactivated: {reason}"},
                actor, reason
            )
            await log_tariff_event(db, AuditAction.TARIFF_DEACTIVATED, actor, tariff, metadata={"reason": reason})
            return tariff

        tariff = await TariffService._commit_unit_of_work(db, operation)
        await db.refresh(tariff)

        await publish_tariff_event(TariffEvent.DEACTIVATED, event_payload(tariff, reason=reason))
        logger.info("Tariff deactivated: %s (%s)", tariff.tariff_code, reason)
        return tariff

    @staticmethod
    async def delete_tariff(db: AsyncSession, tariff_id: str, actor: str) -> None:
        """
        Delete a tariff that is not ACTIVE.

        Raises:
            InvalidStateError: Tariff is active
        """
        async def operation():
            tariff = await TariffStore.get_for_update(db, tariff_id)
            if tariff.status == TariffStatus.ACTIVE:
                raise InvalidStateError(
                    f"Cannot delete active tariff {tariff.tariff_code}",
                    tariff_code=tariff.tariff_code
                )
            payload = event_payload(tariff, status=tariff.status.value)
            await log_tariff_event(db, AuditAction.TARIFF_DELETED, actor, tariff, metadata={"status": tariff.status.value})
            await db.delete(tariff)
            await db.flush()
            return payload

        payload = await TariffService._commit_unit_of_work(db, operation)

        await publish_tariff_event(TariffEvent.DELETED, payload)
        logger.info("Tariff deleted: %s", payload["tariff_code"])

    # ------------------------------------------------------------------
    # Selection and pricing (read-only)
    # ------------------------------------------------------------------

    @staticmethod
    async def resolve_applicable_tariff(
        db: AsyncSession,
        tariff_type: TariffType,
        client_id: Optional[str] = None,
        container_type: Optional[str] = None,
        service_date: Optional[date] = None,
    ) -> Optional[Tariff]:
        return await TariffResolver.resolve_applicable_tariff(
            db, tariff_type, client_id=client_id, container_type=container_type, service_date=service_date
        )

    @staticmethod
    async def calculate_price(
        db: AsyncSession,
        tariff_id: str,
        quantity,
        container_type: Optional[str] = None,
        weight=None,
        service_date: Optional[date] = None,
        time_slot: Optional[str] = None,
    ) -> PriceBreakdown:
        """
        Price `quantity` against the tariff with id `tariff_id`.

        `container_type` and `service_date` are accepted for callers that
        resolved the tariff with them; applicability conditions are not
        re-checked here.

        Raises:
            ResourceNotFoundError: Unknown id
            InvalidStateError: Tariff is not active today
            InvalidArgumentError: Weight missing for a weight-based tariff
        """
        tariff = await TariffStore.get_by_id(db, tariff_id)
        return calculate_tariff_price(tariff, quantity, weight=weight, time_slot=time_slot)
