from fastapi.testclient import TestClient

from storyloom.main import app
from storyloom.modules.credits.pricing import quote_for_words
from tests.support.auth import admin_bearer, bearer


def test_balance_grants_signup_bonus_once() -> None:
    client = TestClient(app)
    headers = bearer("reader-1")
    first = client.get("/credits/balance", headers=headers)
    second = client.get("/credits/balance", headers=headers)
    assert first.status_code == 200
    assert first.json() == {"balance": 15, "lifetimeEarned": 15, "lifetimeSpent": 0}
    assert second.json()["balance"] == 15


def test_quote_endpoint_uses_server_pricing() -> None:
    client = TestClient(app)
    resp = client.post("/credits/quote", json={"wordsPerChapter": 120, "includeAudio": True})
    assert resp.status_code == 200
    expected = quote_for_words(120, include_audio=True)
    assert resp.json() == {
        "storyType": "medium",
        "chapters": expected.chapters,
        "storyCost": expected.story_cost,
        "audioCost": expected.audio_cost,
        "totalCost": expected.total_cost,
    }


def test_quote_requires_length() -> None:
    client = TestClient(app)
    resp = client.post("/credits/quote", json={"includeAudio": True})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "INVALID_REQUEST"


def test_transactions_page() -> None:
    client = TestClient(app)
    headers = bearer("reader-2")
    client.get("/credits/balance", headers=headers)
    resp = client.get("/credits/transactions", headers=headers, params={"limit": 5})
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["transactions"][0]["reason"] == "signup_bonus"
    assert body["transactions"][0]["amount"] == 15


def test_admin_grant() -> None:
    client = TestClient(app)
    resp = client.post(
        "/admin/credits/grant",
        json={"userId": "reader-3", "amount": 7, "referenceId": "promo-1"},
        headers=admin_bearer(),
    )
    assert resp.status_code == 200
    assert resp.json() == {"userId": "reader-3", "balance": 7}

    again = client.post(
        "/admin/credits/grant",
        json={"userId": "reader-3", "amount": 7, "referenceId": "promo-1"},
        headers=admin_bearer(),
    )
    assert again.json()["balance"] == 7


def test_grant_requires_admin() -> None:
    client = TestClient(app)
    resp = client.post("/admin/credits/grant", json={"userId": "x", "amount": 1}, headers=bearer("reader-4"))
    assert resp.status_code == 403
