"""Integration tests: Billing endpoints (in-memory store behind the API)."""

from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

from app.utils.time import get_utc_today

OCTOBER = {"start": "2026-10-01", "end": "2026-10-31"}


async def _bill_october(async_client: AsyncClient, api_base: str) -> dict:
    resp = await async_client.post(
        f"{api_base}/billing/subscription-fees",
        json={"per_student_rate": "150", "period": OCTOBER},
    )
    assert resp.status_code == 200
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("http://test/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert "X-Request-ID" in resp.headers


@pytest.mark.asyncio
async def test_subscription_batch_and_rerun(async_client: AsyncClient, api_base: str, schools):
    data = await _bill_october(async_client, api_base)
    assert len(data["created"]) == len(schools)
    by_school = {r["school_id"]: r for r in data["created"]}
    big = by_school[str(schools[2].id)]
    assert big["amount"] == "18000.00"
    assert big["student_count"] == 120
    assert big["invoice_number"].startswith("SUB-2026-")
    assert big["status"] == "pending"

    rerun = await _bill_october(async_client, api_base)
    assert rerun["created"] == []
    assert sorted(rerun["skipped"]) == sorted(str(s.id) for s in schools)


@pytest.mark.asyncio
async def test_setup_fee_batch_rejects_zero_amount(async_client: AsyncClient, api_base: str, store):
    resp = await async_client.post(f"{api_base}/billing/setup-fees", json={"amount": "0"})
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "INVALID_AMOUNT"
    assert store.records == {}


@pytest.mark.asyncio
async def test_setup_fee_batch_reports_unknown_school(async_client: AsyncClient, api_base: str, schools):
    missing = str(uuid4())
    resp = await async_client.post(
        f"{api_base}/billing/setup-fees",
        json={"scope": {"school_ids": [str(schools[0].id), missing]}},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert len(data["created"]) == 1
    assert data["created"][0]["amount"] == "5000.00"
    assert data["failed"] == [{"school_id": missing, "reason": "School not found", "code": "RESOURCE_NOT_FOUND"}]


@pytest.mark.asyncio
async def test_mark_paid_then_cancel_is_rejected(async_client: AsyncClient, api_base: str):
    data = await _bill_october(async_client, api_base)
    record_id = data["created"][0]["id"]

    resp = await async_client.post(
        f"{api_base}/billing/records/{record_id}/status",
        json={"status": "paid", "payment_method": "mpesa", "paid_date": get_utc_today().isoformat()},
    )
    assert resp.status_code == 200
    paid = resp.json()["data"]
    assert paid["status"] == "paid"
    assert paid["payment_method"] == "mpesa"

    resp = await async_client.post(f"{api_base}/billing/records/{record_id}/status", json={"status": "cancelled"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_mark_paid_requires_payment_method(async_client: AsyncClient, api_base: str):
    data = await _bill_october(async_client, api_base)
    record_id = data["created"][0]["id"]
    resp = await async_client.post(
        f"{api_base}/billing/records/{record_id}/status",
        json={"status": "paid", "paid_date": get_utc_today().isoformat()},
    )
    assert resp.status_code == 409
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_get_unknown_record(async_client: AsyncClient, api_base: str):
    resp = await async_client.get(f"{api_base}/billing/records/{uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


@pytest.mark.asyncio
async def test_list_records_with_filters(async_client: AsyncClient, api_base: str, schools):
    await _bill_october(async_client, api_base)
    resp = await async_client.get(
        f"{api_base}/billing/records",
        params={"billing_type": "subscription_fee", "page_size": 2},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["data"]) == 2
    assert body["meta"]["total"] == len(schools)
    assert body["meta"]["total_pages"] == 3


@pytest.mark.asyncio
async def test_list_records_rejects_reversed_dates(async_client: AsyncClient, api_base: str):
    resp = await async_client.get(
        f"{api_base}/billing/records",
        params={"date_from": "2026-10-31", "date_to": "2026-10-01"},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_amend_pending_record(async_client: AsyncClient, api_base: str):
    data = await _bill_october(async_client, api_base)
    record_id = data["created"][0]["id"]
    resp = await async_client.patch(
        f"{api_base}/billing/records/{record_id}",
        json={"amount": "1000", "description": "Adjusted after enrollment audit"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["amount"] == "1000.00"


@pytest.mark.asyncio
async def test_stats_and_school_summary(async_client: AsyncClient, api_base: str, schools):
    await _bill_october(async_client, api_base)

    resp = await async_client.get(f"{api_base}/billing/stats")
    assert resp.status_code == 200
    stats = resp.json()["data"]
    # 150 per student over 10 + 25 + 120 + 40 + 7 students
    assert stats["total_billed"] == "30300.00"
    assert Decimal(stats["total_paid"]) == 0
    assert stats["currency"] == "KES"

    resp = await async_client.get(f"{api_base}/billing/schools/{schools[2].id}/summary")
    assert resp.status_code == 200
    assert resp.json()["data"]["outstanding"] == "18000.00"


@pytest.mark.asyncio
async def test_overdue_sweep_leaves_current_records(async_client: AsyncClient, api_base: str):
    await _bill_october(async_client, api_base)
    resp = await async_client.post(f"{api_base}/billing/overdue-sweep")
    assert resp.status_code == 200
    assert resp.json()["data"] == []


@pytest.mark.asyncio
async def test_fee_preview(async_client: AsyncClient, api_base: str, schools):
    resp = await async_client.get(
        f"{api_base}/billing/schools/{schools[1].id}/fee-preview",
        params={"per_student_rate": "200"},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["student_count"] == 25
    assert data["calculated_amount"] == "5000.00"


@pytest.mark.asyncio
async def test_export_projection(async_client: AsyncClient, api_base: str, schools):
    await _bill_october(async_client, api_base)
    resp = await async_client.post(
        f"{api_base}/billing/export",
        json={"format": "excel", "filters": {"school_id": str(schools[0].id)}},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["filename"].endswith(".xlsx")
    assert len(data["rows"]) == 1
    assert data["rows"][0]["amount"] == "1500.00"
    assert data["summary"]["total_billed"] == "1500.00"


@pytest.mark.asyncio
async def test_overdue_cannot_be_requested_directly(async_client: AsyncClient, api_base: str, schools):
    resp = await async_client.post(
        f"{api_base}/billing/setup-fees",
        json={"due_date": "2026-01-15", "scope": {"school_ids": [str(schools[0].id)]}},
    )
    record_id = resp.json()["data"]["created"][0]["id"]

    resp = await async_client.post(f"{api_base}/billing/records/{record_id}/status", json={"status": "overdue"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

    resp = await async_client.get(f"{api_base}/billing/records/{record_id}")
    assert resp.json()["data"]["status"] == "pending"

    # The sweep is the only way to overdue
    resp = await async_client.post(f"{api_base}/billing/overdue-sweep")
    assert [r["id"] for r in resp.json()["data"]] == [record_id]
    assert resp.json()["data"][0]["status"] == "overdue"


@pytest.mark.asyncio
async def test_stats_filtered_by_currency(async_client: AsyncClient, api_base: str):
    await _bill_october(async_client, api_base)

    resp = await async_client.get(f"{api_base}/billing/stats", params={"currency": "usd"})
    assert resp.status_code == 200
    stats = resp.json()["data"]
    assert stats["currency"] == "USD"
    assert stats["record_count"] == 0
