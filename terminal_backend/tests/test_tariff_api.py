"""
HTTP tests for the tariff endpoints.
"""

from decimal import Decimal

import pytest

from terminal_backend.app.core.dependencies import get_actor
from terminal_backend.app.core.exceptions import InvalidArgumentError

BASE = "/v1/tariffs"

STORAGE_PAYLOAD = {
    "tariff_name": "Container storage",
    "description": "Daily storage per container",
    "tariff_type": "storage",
    "pricing_model": "variable",
    "unit_of_measure": "day",
    "effective_date": "2020-01-01",
    "base_price": "100.00",
    "discount_policy": {
        "volume_discounts": [
            {
                "discount_id": "VD-1",
                "discount_name": "Volume 3+",
                "threshold_quantity": 3,
                "discount_type": "percentage",
                "discount_value": 10,
                "stackable": True,
            }
        ]
    },
}


async def create_tariff(client, headers, **overrides):
    payload = {**STORAGE_PAYLOAD, **overrides}
    response = await client.post(BASE, json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def create_active_tariff(client, headers, **overrides):
    tariff = await create_tariff(client, headers, **overrides)
    response = await client.put(f"{BASE}/{tariff['id']}/activate", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["event_bus"] == "up"


@pytest.mark.asyncio
async def test_create_tariff(client, actor_headers):
    data = await create_tariff(client, actor_headers)

    assert data["status"] == "draft"
    assert data["tariff_code"].startswith("TR-ST-")
    assert data["currency"] == "USD"
    assert data["is_active_now"] is False
    assert data["is_client_specific"] is False
    assert data["days_until_expiry"] == -1
    assert Decimal(data["base_price"]) == Decimal("100.00")


@pytest.mark.asyncio
async def test_mutations_require_actor_header(client):
    response = await client.post(BASE, json=STORAGE_PAYLOAD)

    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_actor_header_is_trimmed():
    assert await get_actor("  ops.tester ") == "ops.tester"


@pytest.mark.asyncio
async def test_blank_actor_header_is_rejected():
    with pytest.raises(InvalidArgumentError):
        await get_actor("   ")


@pytest.mark.asyncio
async def test_create_rejects_bad_window(client, actor_headers):
    response = await client.post(
        BASE,
        json={**STORAGE_PAYLOAD, "effective_date": "2024-05-01", "expiry_date": "2024-04-01"},
        headers=actor_headers
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_INVALID_ARGUMENT"


@pytest.mark.asyncio
async def test_create_rejects_unknown_structure_model(client, actor_headers):
    response = await client.post(
        BASE, json={**STORAGE_PAYLOAD, "pricing_structure": {"model": "lottery"}}, headers=actor_headers
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_activate_and_calculate(client, actor_headers):
    tariff = await create_active_tariff(client, actor_headers)
    assert tariff["status"] == "active"
    assert tariff["is_active_now"] is True

    response = await client.post(f"{BASE}/{tariff['id']}/calculate", json={"quantity": 5})

    assert response.status_code == 200
    data = response.json()
    assert Decimal(data["base_amount"]) == Decimal("500.00")
    assert Decimal(data["discount_amount"]) == Decimal("50.00")
    assert Decimal(data["total_amount"]) == Decimal("450.00")
    assert data["applied_discounts"][0]["discount_id"] == "VD-1"
    assert data["tariff_code"] == tariff["tariff_code"]


@pytest.mark.asyncio
async def test_calculate_on_draft_is_conflict(client, actor_headers):
    tariff = await create_tariff(client, actor_headers)

    response = await client.post(f"{BASE}/{tariff['id']}/calculate", json={"quantity": 1})

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ERR_INVALID_STATE"
    assert body["details"]["tariff_code"] == tariff["tariff_code"]


@pytest.mark.asyncio
async def test_calculate_weight_based_without_weight(client, actor_headers):
    tariff = await create_active_tariff(client, actor_headers, pricing_model="weight_based", unit_of_measure="ton")

    response = await client.post(f"{BASE}/{tariff['id']}/calculate", json={"quantity": 1})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_overlapping_activation_names_conflicting_code(client, actor_headers):
    existing = await create_active_tariff(client, actor_headers, effective_date="2024-05-01")
    candidate = await create_tariff(
        client, actor_headers, effective_date="2024-01-01", expiry_date="2024-06-30"
    )

    response = await client.put(f"{BASE}/{candidate['id']}/activate", headers=actor_headers)

    assert response.status_code == 409
    body = response.json()
    assert existing["tariff_code"] in body["message"]
    assert body["details"]["tariff_code"] == existing["tariff_code"]


@pytest.mark.asyncio
async def test_applicable_tariff(client, actor_headers):
    general = await create_active_tariff(client, actor_headers)
    client_specific = await create_active_tariff(client, actor_headers, client_id="CLIENT-1")

    response = await client.get(f"{BASE}/applicable", params={"tariff_type": "storage", "client_id": "CLIENT-1"})
    assert response.status_code == 200
    assert response.json()["id"] == client_specific["id"]

    response = await client.get(f"{BASE}/applicable", params={"tariff_type": "storage"})
    assert response.json()["id"] == general["id"]


@pytest.mark.asyncio
async def test_no_applicable_tariff_is_404(client):
    response = await client.get(f"{BASE}/applicable", params={"tariff_type": "demurrage"})

    assert response.status_code == 404
    assert response.json()["message"] == "No applicable tariff found"


@pytest.mark.asyncio
async def test_get_by_id_and_code(client, actor_headers):
    tariff = await create_tariff(client, actor_headers)

    by_id = await client.get(f"{BASE}/{tariff['id']}")
    by_code = await client.get(f"{BASE}/code/{tariff['tariff_code']}")
    missing = await client.get(f"{BASE}/does-not-exist")

    assert by_id.json()["tariff_code"] == tariff["tariff_code"]
    assert by_code.json()["id"] == tariff["id"]
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "ERR_NOT_FOUND_001"


@pytest.mark.asyncio
async def test_update_records_version_history(client, actor_headers):
    tariff = await create_tariff(client, actor_headers)

    response = await client.put(
        f"{BASE}/{tariff['id']}",
        json={"base_price": "120.00", "change_reason": "Annual review"},
        headers=actor_headers
    )

    assert response.status_code == 200
    history = response.json()["version_history"]
    assert len(history) == 1
    assert history[0]["changed_by"] == actor_headers["X-Actor-Id"]
    assert history[0]["change_reason"] == "Annual review"


@pytest.mark.asyncio
async def test_update_illegal_status_is_conflict(client, actor_headers):
    tariff = await create_tariff(client, actor_headers)

    response = await client.put(f"{BASE}/{tariff['id']}", json={"status": "superseded"}, headers=actor_headers)

    assert response.status_code == 409
    assert response.json()["details"]["tariff_code"] == tariff["tariff_code"]


@pytest.mark.asyncio
async def test_deactivate_then_delete(client, actor_headers, redis_mock):
    tariff = await create_active_tariff(client, actor_headers)

    blocked = await client.delete(f"{BASE}/{tariff['id']}", headers=actor_headers)
    assert blocked.status_code == 409

    response = await client.put(
        f"{BASE}/{tariff['id']}/deactivate", json={"reason": "Replaced by 2025 rate card"}, headers=actor_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "inactive"
    assert "Deactivated: Replaced by 2025 rate card" in response.json()["notes"]

    deleted = await client.delete(f"{BASE}/{tariff['id']}", headers=actor_headers)
    assert deleted.status_code == 204

    gone = await client.get(f"{BASE}/{tariff['id']}")
    assert gone.status_code == 404

    events = [message["event"] for message in redis_mock.events()]
    assert events == ["tariff.created", "tariff.activated", "tariff.deactivated", "tariff.deleted"]


@pytest.mark.asyncio
async def test_audit_trail(client, actor_headers):
    tariff = await create_active_tariff(client, actor_headers)

    response = await client.get(f"{BASE}/{tariff['id']}/audit")

    assert response.status_code == 200
    actions = {entry["action"] for entry in response.json()}
    assert actions == {"TARIFF_CREATED", "TARIFF_ACTIVATED"}
    assert all(entry["actor"] == actor_headers["X-Actor-Id"] for entry in response.json())


@pytest.mark.asyncio
async def test_listing_endpoints(client, actor_headers):
    active = await create_active_tariff(client, actor_headers, tariff_name="Reefer storage")
    draft = await create_tariff(client, actor_headers, tariff_type="handling", client_id="CLIENT-9")

    all_tariffs = await client.get(BASE)
    assert {t["id"] for t in all_tariffs.json()} == {active["id"], draft["id"]}

    by_type = await client.get(f"{BASE}/type/handling")
    assert [t["id"] for t in by_type.json()] == [draft["id"]]

    by_status = await client.get(f"{BASE}/status/active")
    assert [t["id"] for t in by_status.json()] == [active["id"]]

    by_client = await client.get(f"{BASE}/client/CLIENT-9")
    assert [t["id"] for t in by_client.json()] == [draft["id"]]

    searched = await client.get(f"{BASE}/search", params={"search_text": "reefer", "is_active": "true"})
    assert [t["id"] for t in searched.json()] == [active["id"]]

    general = await client.get(f"{BASE}/general")
    assert [t["id"] for t in general.json()] == [active["id"]]

    active_now = await client.get(f"{BASE}/active")
    assert [t["id"] for t in active_now.json()] == [active["id"]]

    expiring = await client.get(f"{BASE}/expiring", params={"days_ahead": 30})
    assert expiring.json() == []


@pytest.mark.asyncio
async def test_statistics_endpoint(client, actor_headers):
    await create_active_tariff(client, actor_headers)
    await create_tariff(client, actor_headers, tariff_type="handling")

    response = await client.get(f"{BASE}/statistics")

    assert response.status_code == 200
    data = response.json()
    assert data["totals"]["total_tariffs"] == 2
    assert {row["status"]: row["count"] for row in data["by_status"]} == {"active": 1, "draft": 1}
