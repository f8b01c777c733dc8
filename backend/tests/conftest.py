"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_dedoc")
os.environ.setdefault("JWT_SECRET", "test-secret")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from server import app
from services.errors import ProviderError
from services.reconciliation_service import ReconciliationService
from utils.rate_limiter import rate_limiter

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
USER_ID = "user-1"
OTHER_USER_ID = "user-2"


# ============================================================================
# In-memory collaborators for the reconciliation engine
# ============================================================================

class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakePaymentRepository:
    def __init__(self):
        self.records = {}

    async def insert(self, doc):
        if doc["reference"] in self.records:
            return False
        self.records[doc["reference"]] = copy.deepcopy(doc)
        return True

    async def find_by_reference(self, reference):
        record = self.records.get(reference)
        return copy.deepcopy(record) if record else None

    async def find_success_for_user(self, user_id):
        return [copy.deepcopy(r) for r in self.records.values()
                if r["user_id"] == user_id and r["status"] == "success"]

    async def find_pending(self, user_id=None, created_before=None):
        return [copy.deepcopy(r) for r in self.records.values()
                if r["status"] == "pending"
                and (user_id is None or r["user_id"] == user_id)
                and (created_before is None or r["created_at"] < created_before)]

    async def transition_from_pending(self, reference, fields):
        return await self.transition(reference, "pending", fields)

    async def transition(self, reference, from_status, fields):
        record = self.records.get(reference)
        if not record or record["status"] != from_status:
            return False
        record.update(copy.deepcopy(fields))
        return True

    async def distinct_users_with_success(self):
        return sorted({r["user_id"] for r in self.records.values() if r["status"] == "success"})


class FakeUserRepository:
    def __init__(self):
        self.users = {}

    def add(self, user_id, **fields):
        self.users[user_id] = {
            "user_id": user_id,
            "username": fields.get("username", user_id),
            "email": fields.get("email", f"{user_id}@example.com"),
            "full_name": fields.get("full_name", "Ada Obi"),
            "phone_number": fields.get("phone_number", "08030000000"),
            "role": fields.get("role", "user"),
            "subscription": fields.get("subscription", {
                "plan": "none", "start_date": None, "end_date": None,
                "status": "inactive", "reference": None,
            }),
        }

    async def get(self, user_id):
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def set_subscription(self, user_id, snapshot, updated_at):
        if user_id in self.users:
            self.users[user_id]["subscription"] = copy.deepcopy(snapshot)
            self.users[user_id]["updated_at"] = updated_at

    async def clear_active_subscription(self, user_id, updated_at):
        user = self.users.get(user_id)
        if not user or user["subscription"].get("status") != "active":
            return False
        user["subscription"] = {"plan": "none", "start_date": None, "end_date": None,
                                "status": "inactive", "reference": None}
        user["updated_at"] = updated_at
        return True


class FakeProvider:
    """Paystack stand-in. Verification outcome is configurable per reference."""

    def __init__(self):
        self.counter = 0
        self.initialize_calls = []
        self.verify_calls = []
        self.outcomes = {}
        self.error = None

    async def initialize(self, email, amount_minor, callback_url, metadata):
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        self.counter += 1
        reference = f"ref_{self.counter}"
        self.initialize_calls.append({
            "email": email, "amount_minor": amount_minor,
            "callback_url": callback_url, "metadata": metadata,
        })
        return {
            "reference": reference,
            "authorization_url": f"https://checkout.paystack.com/{reference}",
            "access_code": f"ac_{self.counter}",
        }

    async def verify(self, reference):
        self.verify_calls.append(reference)
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        outcome = self.outcomes.get(reference, {"status": "success"})
        return {
            "status": outcome["status"],
            "metadata": {},
            "amount": outcome.get("amount"),
            "raw": {"reference": reference, "status": outcome["status"]},
        }

    def fail_transport(self):
        self.error = ProviderError("Payment provider timed out")


class FakeEmail:
    def __init__(self):
        self.receipts = []

    async def send_payment_receipt(self, user, payment):
        self.receipts.append((user["user_id"], payment["reference"]))


async def drain_tasks():
    """Let fire-and-forget tasks (receipt emails) run."""
    for _ in range(5):
        await asyncio.sleep(0)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def payments():
    return FakePaymentRepository()


@pytest.fixture
def users():
    repo = FakeUserRepository()
    repo.add(USER_ID)
    repo.add(OTHER_USER_ID)
    return repo


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def email():
    return FakeEmail()


@pytest.fixture
def engine(payments, users, provider, email, clock):
    return ReconciliationService(
        payments=payments,
        users=users,
        provider=provider,
        email=email,
        clock=clock,
        grace_window=timedelta(seconds=300),
    )


@pytest.fixture
def audit_log():
    """Capture audit writes from the engine instead of hitting MongoDB."""
    with patch("services.reconciliation_service.create_audit_log", new_callable=AsyncMock) as mock_audit:
        yield mock_audit


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


def bearer(user_id=USER_ID, role="user", username="ada"):
    token = create_access_token({"user_id": user_id, "username": username, "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return bearer()


@pytest.fixture
def admin_headers():
    return bearer(user_id="admin-1", role="admin", username="admin")


@pytest.fixture(autouse=True)
def stored_roles():
    """Roles as stored in ``users``; admin checks read these, not the token claim."""
    roles = {"admin-1": "admin"}
    with patch(
        "middleware.load_user_role",
        new_callable=AsyncMock,
        side_effect=lambda user_id: roles.get(user_id, "user"),
    ):
        yield roles


@pytest.fixture
def app_engine(engine, audit_log):
    """Route the HTTP layer (routes and the subscription gate) to the in-memory engine."""
    with patch("services.reconciliation_service.reconciliation_service", engine), \
         patch("routes.subscription.reconciliation_service", engine), \
         patch("routes.payments.reconciliation_service", engine), \
         patch("routes.webhooks.reconciliation_service", engine):
        yield engine
