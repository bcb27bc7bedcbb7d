from datetime import datetime, timedelta, timezone

import pytest
from conftest import png_base64, seed_expense


def test_categorize_without_model_uses_fallback(client, user):
    response = client.post(
        "/api/ai/categorize", headers=user["headers"], json={"description": "Coffee", "amount": 4.5}
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["category"] == "Other"
    assert data["confidence"] == 0.5


def test_categorize_validates_input(client, user):
    response = client.post("/api/ai/categorize", headers=user["headers"], json={"description": " ", "amount": 1})
    assert response.status_code == 400


def test_insights_with_supplied_expenses(client, user):
    response = client.post(
        "/api/ai/insights",
        headers=user["headers"],
        json={
            "period": "month",
            "expenses": [
                {"amount": 10.25, "category": "Food & Dining", "description": "Tacos"},
                {"amount": 4.5, "category": "Transportation"},
            ],
        },
    )
    data = response.json()["data"]
    assert data["period"] == "month"
    assert data["totalExpenses"] == 2
    assert data["totalAmount"] == 14.75
    assert data["insights"] == ["Unable to generate insights at this time."]


def test_insights_look_back_over_period(client, user):
    now = datetime.now(timezone.utc)
    seed_expense(user["userId"], amount=5.0, date=now - timedelta(days=2))
    seed_expense(user["userId"], amount=7.0, date=now - timedelta(days=20))
    seed_expense(user["userId"], amount=9.0, date=now - timedelta(days=200))

    week = client.post("/api/ai/insights", headers=user["headers"], json={"period": "week"}).json()["data"]
    assert week["totalExpenses"] == 1
    year = client.post("/api/ai/insights", headers=user["headers"], json={"period": "year"}).json()["data"]
    assert year["totalAmount"] == 21.0


def test_insights_reject_unknown_period(client, user):
    response = client.post("/api/ai/insights", headers=user["headers"], json={"period": "decade"})
    assert response.status_code == 400


def test_predict(client, user):
    now = datetime.now(timezone.utc)
    seed_expense(user["userId"], amount=100.0, category="Food & Dining", date=now - timedelta(days=1))
    seed_expense(user["userId"], amount=50.0, category="Travel", date=now)

    response = client.post("/api/ai/predict", headers=user["headers"], json={"months": 2})
    data = response.json()["data"]
    assert data["months"] == 2
    assert data["historicalDataPoints"] == 2
    assert data["predictions"] == {"Food & Dining": 200.0, "Travel": 100.0}
    assert data["confidence"] == pytest.approx(1 / 6)


def test_predict_rejects_out_of_range_months(client, user):
    assert client.post("/api/ai/predict", headers=user["headers"], json={"months": 13}).status_code == 400


def test_process_receipt_runs_ocr(client, user):
    response = client.post("/api/ai/process-receipt", headers=user["headers"], json={"imageData": png_base64()})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["text"].startswith("COFFEE HOUSE")
    assert data["confidence"] == pytest.approx(0.85)
    assert data["extractedData"]["items"] == []


def test_expense_receipt_endpoint_shares_ocr(client, user):
    response = client.post(
        "/api/expenses/process-receipt", headers=user["headers"], json={"imageData": png_base64()}
    )
    assert response.status_code == 200
    assert response.json()["data"]["confidence"] == pytest.approx(0.85)


def test_process_voice_without_model_fails(client, user):
    response = client.post("/api/ai/process-voice", headers=user["headers"], json={"audioData": "aGVsbG8="})
    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Failed to process voice audio"}


def test_suggestions_list_similar_transactions(client, user):
    for i in range(7):
        seed_expense(user["userId"], amount=3.0 + i, description=f"Coffee beans {i}")
    seed_expense(user["userId"], amount=80.0, description="Train ticket")

    response = client.post(
        "/api/ai/suggestions", headers=user["headers"], json={"description": "COFFEE", "amount": 4}
    )
    data = response.json()["data"]
    assert data["category"] == "Other"
    assert data["alternativeCategories"] == ["Food & Dining", "Shopping"]
    assert len(data["similarTransactions"]) == 5
    assert all(tx["category"] == "Other" for tx in data["similarTransactions"])
    assert len(data["recommendations"]) == 3


def test_patterns(client, user):
    monday_jan = datetime(2025, 1, 6, tzinfo=timezone.utc)
    monday_feb = datetime(2025, 2, 3, tzinfo=timezone.utc)
    seed_expense(user["userId"], amount=30.0, category="Travel", merchant="Rail", date=monday_jan)
    seed_expense(user["userId"], amount=10.0, category="Other", date=monday_feb)

    data = client.get("/api/ai/patterns", headers=user["headers"]).json()["data"]
    assert data["topCategories"] == {"Travel": 30.0, "Other": 10.0}
    assert data["merchantPatterns"] == {"Rail": 30.0}
    assert data["dayOfWeekPatterns"] == {"Monday": 40.0}
    assert data["monthlyPatterns"] == {"2025-01": 30.0, "2025-02": 10.0}
    assert data["spendingTrends"] == {"2025-02": -66.67}


def test_ai_routes_require_auth(client):
    assert client.get("/api/ai/patterns").status_code == 401
