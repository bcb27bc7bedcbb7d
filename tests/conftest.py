import base64
import io
import os

# Must be set before spendbox.core.config is imported
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ["DYNAMO_REGION"] = "eu-west-1"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DYNAMO_CREATE_TABLES"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["OPENAI_API_KEY"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient
from moto import mock_aws
from PIL import Image

from spendbox.core import rate_limit
from spendbox.core.deps import get_ai_assistant
from spendbox.db import dynamo
from spendbox.models.expense import ExpenseInDB
from spendbox.utils.ai_service import AIAssistant


class FakeOCR:
    """Stands in for pytesseract."""

    def __init__(self, text="COFFEE HOUSE\nTOTAL 12.50", confidences=("-1", "90", "80"), error=None):
        self.text = text
        self.confidences = list(confidences)
        self.error = error

    def image_to_string(self, image, lang=None):
        if self.error:
            raise self.error
        return self.text

    def image_to_data(self, image, lang=None, output_type=None):
        return {"conf": self.confidences}


def png_base64() -> str:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), "white").save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture(autouse=True)
def reset_rate_limits():
    rate_limit.reset_all()
    yield
    rate_limit.reset_all()


@pytest.fixture
def aws():
    with mock_aws():
        dynamo.reset()
        dynamo.create_tables()
        yield
        dynamo.reset()


@pytest.fixture
def assistant():
    return AIAssistant(client=None, ocr_engine=FakeOCR())


@pytest.fixture
def client(aws, assistant):
    from spendbox.main import app

    app.dependency_overrides[get_ai_assistant] = lambda: assistant
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register(client, email="ada@example.com", password="password123", first_name="Ada", last_name="Lovelace"):
    response = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "firstName": first_name, "lastName": last_name},
    )
    assert response.status_code == 201, response.text
    body = response.json()
    return body["token"], body["user"]


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def expense_payload(**overrides):
    payload = {
        "amount": 12.5,
        "description": "Lunch",
        "category": "Food & Dining",
        "merchant": "Cafe Uno",
        "paymentMethod": {"type": "card", "last4": "4242"},
    }
    payload.update(overrides)
    return payload


def seed_expense(user_id, **fields):
    """Write an expense straight to the table (counts against the plan limit)."""
    data = {
        "amount": 10.0,
        "currency": "USD",
        "description": "Seeded",
        "category": "Other",
        "payment_method": {"type": "cash"},
    }
    data.update(fields)
    expense = ExpenseInDB(user_id=user_id, **data)
    dynamo.create_expense(expense.model_dump(mode="json"))
    return expense


@pytest.fixture
def user(client):
    token, user = register(client)
    return {"token": token, "headers": auth(token), **user}
