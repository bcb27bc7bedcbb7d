from conftest import expense_payload, seed_expense

from spendbox.db import dynamo


def test_profile_round_trip(client, user):
    profile = client.get("/api/users/profile", headers=user["headers"]).json()["data"]
    assert profile["userId"] == user["userId"]

    response = client.put("/api/users/profile", headers=user["headers"], json={"lastName": "Byron"})
    assert response.status_code == 200
    assert response.json()["data"]["lastName"] == "Byron"
    assert response.json()["data"]["firstName"] == "Ada"


def test_preferences_update_is_partial(client, user):
    response = client.put(
        "/api/users/preferences",
        headers=user["headers"],
        json={"timezone": "Europe/London", "notifications": {"email": False}},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Preferences updated successfully"

    prefs = client.get("/api/users/preferences", headers=user["headers"]).json()["data"]
    assert prefs["timezone"] == "Europe/London"
    assert prefs["currency"] == "USD"
    assert prefs["notifications"] == {"email": False, "push": True, "sms": False}
    assert "Housing" in prefs["categories"]


def test_preferences_reject_bad_currency(client, user):
    response = client.put("/api/users/preferences", headers=user["headers"], json={"currency": "DOLLARS"})
    assert response.status_code == 400


def test_upgrade_to_premium(client, user):
    client.post("/api/expenses", headers=user["headers"], json=expense_payload())

    response = client.post("/api/users/upgrade", headers=user["headers"])
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Successfully upgraded to premium"
    subscription = body["data"]
    assert subscription["plan"] == "premium"
    assert subscription["transactionLimit"] == 999999
    assert subscription["usedTransactions"] == 1
    assert subscription["endDate"] is not None

    again = client.post("/api/users/upgrade", headers=user["headers"])
    assert again.status_code == 400
    assert again.json()["message"] == "User is already on premium plan"

    current = client.get("/api/users/subscription", headers=user["headers"]).json()["data"]
    assert current["plan"] == "premium"


def test_stats(client, user):
    seed_expense(user["userId"], amount=30.0, category="Travel")
    seed_expense(user["userId"], amount=10.0, category="Travel")
    seed_expense(user["userId"], amount=20.0, category="Housing")

    stats = client.get("/api/users/stats", headers=user["headers"]).json()["data"]
    assert stats["totalExpenses"] == 3
    assert stats["totalAmount"] == 60.0
    assert stats["averageExpense"] == 20.0
    assert stats["mostUsedCategory"] == "Travel"
    assert stats["subscriptionUsage"] == {"used": 3, "limit": 50, "percentage": 6.0}
    assert stats["accountAge"] == 0


def test_stats_without_expenses(client, user):
    stats = client.get("/api/users/stats", headers=user["headers"]).json()["data"]
    assert stats["totalExpenses"] == 0
    assert stats["averageExpense"] == 0
    assert stats["mostUsedCategory"] == ""


def test_status_requires_admin(client, user):
    forbidden = client.get("/api/status", headers=user["headers"])
    assert forbidden.status_code == 403
    assert forbidden.json()["success"] is False

    dynamo.update_user(user["userId"], {"role": "admin"})
    response = client.get("/api/status", headers=user["headers"])
    assert response.status_code == 200
    body = response.json()
    assert body["overall_status"] == "healthy"
    assert body["services"]["dynamodb"]["connected"] is True
    assert set(body["services"]["dynamodb"]["tables"]) == {"users", "expenses"}


def test_health_endpoints(client):
    assert client.get("/health").json()["status"] == "OK"
    body = client.get("/api/health").json()
    assert body["status"] == "healthy"
    assert "timestamp" in body
