"""
Tariff domain events.

Fire-and-forget notifications to external collaborators (invoicing,
notification fan-out), published on Redis pub/sub after the change is
committed. Publishing never fails the operation that triggered it: errors are
logged and the circuit breaker stops hammering an unavailable broker.
"""

import json
import logging
from typing import Any, Dict

from redis.exceptions import RedisError

import terminal_backend.app.core.redis_client as redis_client_module
from terminal_backend.app.core.config import settings
from terminal_backend.app.core.reliability import CircuitOpenError, event_circuit_breaker
from terminal_backend.app.models.tariff import Tariff, utc_now

logger = logging.getLogger("terminal_billing.events")


class TariffEvent:
    CREATED = "tariff.created"
    UPDATED = "tariff.updated"
    ACTIVATED = "tariff.activated"
    DEACTIVATED = "tariff.deactivated"
    DELETED = "tariff.deleted"


def event_payload(tariff: Tariff, **delta: Any) -> Dict[str, Any]:
    """Identity fields every tariff event carries, plus the event's delta."""
    payload = {
        "tariff_id": tariff.id,
        "tariff_code": tariff.tariff_code,
        "tariff_type": tariff.tariff_type.value,
        "client_id": tariff.client_id,
    }
    payload.update(delta)
    return payload


def channel_for(event: str) -> str:
    return f"{settings.event_channel_prefix}.{event}"


async def publish_tariff_event(event: str, payload: Dict[str, Any]) -> bool:
    """
    Publish a tariff event.

    Returns:
        True if the broker accepted the message, False otherwise
    """
    message = json.dumps(
        {"event": event, "occurred_at": utc_now().isoformat(), "payload": payload},
        default=str,
    )
    client = redis_client_module.redis_client

    try:
        await event_circuit_breaker.call(client.publish, channel_for(event), message)
    except CircuitOpenError:
        logger.warning("Event bus circuit open, dropped %s for %s", event, payload.get("tariff_code"))
        return False
    except (RedisError, OSError) as exc:
        logger.warning("Failed to publish %s for %s: %s", event, payload.get("tariff_code"), exc)
        return False
    except Exception:
        # The change is already committed; nothing may propagate from here
        logger.exception("Unexpected error publishing %s for %s", event, payload.get("tariff_code"))
        return False

    logger.debug("Published %s for %s", event, payload.get("tariff_code"))
    return True
