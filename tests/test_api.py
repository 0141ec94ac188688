import json
from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio

from core.config import settings
from infrastructure.external.payments.mock_client import SIGNATURE_HEADER, sign_payload


def _token(user_id: int, *, is_admin: bool = False, expires_in: timedelta = timedelta(hours=1)) -> str:
    payload = {
        "sub": str(user_id),
        "is_admin": is_admin,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _auth(user_id: int, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {_token(user_id, **kwargs)}"}


@pytest_asyncio.fixture
async def client(services):
    from main import app

    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"
    assert resp.headers.get("X-Request-ID")


@pytest.mark.asyncio
async def test_requests_require_bearer_token(client):
    resp = await client.post("/api/v1/enrollments", json={"activity_id": 1})
    assert resp.status_code == 401

    expired = await client.get("/api/v1/orders", headers=_auth(7, expires_in=timedelta(seconds=-5)))
    assert expired.status_code == 401

    forged = await client.get("/api/v1/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert forged.status_code == 401


@pytest.mark.asyncio
async def test_enroll_order_and_notify_over_http(client, seed, gateway):
    activity_id = await seed.activity(await seed.club(), price="150.00")

    resp = await client.post("/api/v1/enrollments", json={"activity_id": activity_id}, headers=_auth(7))
    assert resp.status_code == 200
    enrollment = resp.json()["data"]
    assert enrollment["status"] == "PENDING"

    dup = await client.post("/api/v1/enrollments", json={"activity_id": activity_id}, headers=_auth(7))
    assert dup.status_code == 409

    resp = await client.post("/api/v1/orders", json={"enrollment_id": enrollment["id"]}, headers=_auth(7))
    assert resp.status_code == 200
    order = resp.json()["data"]
    assert order["status"] == "PENDING"

    resp = await client.post("/api/v1/payments/prepay", json={"order_id": order["id"]}, headers=_auth(7))
    assert resp.status_code == 200
    assert resp.json()["data"]["provider"] == "mock"

    body = json.dumps({"out_trade_no": order["order_no"], "trade_state": "SUCCESS", "amount": 15000}).encode()

    bad = await client.post("/api/v1/payments/notify/mock", content=body, headers={SIGNATURE_HEADER: "bad"})
    assert bad.status_code == 400
    assert bad.json()["code"] == "FAIL"

    ok = await client.post(
        "/api/v1/payments/notify/mock",
        content=body,
        headers={SIGNATURE_HEADER: sign_payload(body, gateway._secret)},
    )
    assert ok.status_code == 200
    assert ok.json() == {"code": "SUCCESS", "message": "处理成功"}

    resp = await client.get(f"/api/v1/orders/{order['id']}", headers=_auth(7))
    assert resp.json()["data"]["status"] == "PAID"

    other = await client.get(f"/api/v1/orders/{order['id']}", headers=_auth(8))
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_notify_for_unconfigured_provider_is_not_found(client):
    resp = await client.post("/api/v1/payments/notify/alipay", content=b"{}")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_settlement_trigger_is_admin_only(client, seed):
    activity_id = await seed.activity(await seed.club())
    resp = await client.post(f"/api/v1/settlements/activities/{activity_id}", headers=_auth(100))
    assert resp.status_code == 403

    resp = await client.post(f"/api/v1/settlements/activities/{activity_id}", headers=_auth(1, is_admin=True))
    assert resp.status_code == 409
    assert resp.json()["error"]["details"]["current_status"] == "PUBLISHED"


@pytest.mark.asyncio
async def test_finance_dashboard_over_http(client, seed, place_paid_order):
    club_id = await seed.club(owner_id=100)
    activity_id = await seed.activity(club_id, price="120.00")
    await place_paid_order(7, activity_id)
    base = f"/api/v1/finance/clubs/{club_id}"

    resp = await client.get(f"{base}/dashboard", headers=_auth(100))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["activity_stats"]["total_enrollments"] == 1
    assert data["overview"]["has_bank_account"] is False
    assert data["recent_activities"][0]["id"] == activity_id

    trend = await client.get(f"{base}/dashboard/income-trend", params={"days": 3}, headers=_auth(100))
    assert trend.status_code == 200
    assert len(trend.json()["data"]) == 3

    ranking = await client.get(f"{base}/dashboard/activity-ranking", headers=_auth(100))
    assert [r["id"] for r in ranking.json()["data"]] == [activity_id]

    monthly = await client.get(f"{base}/transactions/monthly", headers=_auth(100))
    assert monthly.status_code == 200
    assert {"income", "refund", "withdrawal", "platform_fee", "net_income"} <= set(monthly.json()["data"])

    report = await client.get(
        f"{base}/transactions/report",
        params={"start_date": "2026-06-01", "end_date": "2026-06-30"},
        headers=_auth(100),
    )
    assert report.status_code == 200

    assert (await client.get(f"{base}/dashboard", headers=_auth(555))).status_code == 403
    assert (await client.get(f"{base}/withdrawals/9999", headers=_auth(100))).status_code == 404
