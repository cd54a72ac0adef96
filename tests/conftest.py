"""Shared pytest fixtures: an in-memory app, a test client, and complaint builders."""
from datetime import datetime, timedelta

import pytest

from app import create_app
from extensions import db
from models import Complaint


@pytest.fixture
def app():
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def ai_verdict(monkeypatch):
    """Stub the AI comparison; set ``holder["result"]`` or ``holder["error"]``.

    With no result configured the stub behaves like an unreachable provider.
    """
    from utils import verification
    from utils.ai_vision import AIVisionError

    holder = {"result": None, "error": None, "calls": 0}

    def fake_compare(complaint, proof, timeout_seconds=None):
        holder["calls"] += 1
        if holder["error"] or holder["result"] is None:
            raise AIVisionError(holder["error"] or "unavailable")
        return dict(holder["result"])

    monkeypatch.setattr(verification, "compare_resolution_evidence", fake_compare)
    return holder


def _base_complaint(**overrides) -> dict:
    payload = {
        "user_id": "citizen-1",
        "title": "Pothole on MG Road",
        "description": "Large pothole near the bus stop",
        "category": "Roads",
        "location": {"lat": 12.97, "lng": 77.59, "address": "MG Road", "districtCode": "D1", "wardCode": "W7"},
        "attachments": [{"url": "https://cdn.example.org/before.jpg", "name": "before.jpg"}],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_complaint(app):
    from utils.workflow import create_complaint

    def _make(**overrides) -> Complaint:
        return create_complaint(_base_complaint(**overrides))

    return _make


def proof(content_hash=None, **overrides) -> dict:
    payload = {
        "attachment": {"url": "https://cdn.example.org/after.jpg", "name": "after.jpg"},
        "description": "Pothole filled and resurfaced",
    }
    if content_hash:
        payload["content_hash"] = content_hash
    payload.update(overrides)
    return payload


def backdate(complaint: Complaint, hours: float) -> Complaint:
    complaint.created_at = datetime.utcnow() - timedelta(hours=hours)
    db.session.commit()
    return complaint
