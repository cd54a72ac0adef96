from types import SimpleNamespace

import pytest

from conftest import proof
from models import ComplaintActivity
from utils import ai_vision
from utils.ai_vision import AIVisionError, classify_complaint_text, compare_resolution_evidence
from utils.workflow import classify_complaint


@pytest.fixture
def gemini(monkeypatch):
    """Replace the Gemini client; set ``holder["text"]`` to the raw model output."""
    holder = {"text": "", "requests": []}

    def generate_content(**kwargs):
        holder["requests"].append(kwargs)
        return SimpleNamespace(text=holder["text"], candidates=None)

    def fake_client(timeout_seconds):
        holder["timeout"] = timeout_seconds
        return SimpleNamespace(models=SimpleNamespace(generate_content=generate_content))

    monkeypatch.setattr(ai_vision, "_client", fake_client)
    return holder


def test_comparison_strips_fences_and_scales_score(app, make_complaint, gemini):
    gemini["text"] = '```json\n{"similarity_score": 82, "verdict": "match", "reason": " Same road, patched. "}\n```'

    result = compare_resolution_evidence(make_complaint(), proof())

    assert result == {"ai_score": 0.82, "ai_verdict": "LIKELY_MATCH", "ai_reason": "Same road, patched."}
    assert gemini["timeout"] == app.config["AI_TIMEOUT_SECONDS"]
    assert gemini["requests"][0]["model"] == app.config["GEMINI_VISION_MODEL"]


def test_comparison_tolerates_surrounding_text(make_complaint, gemini):
    gemini["text"] = 'Here you go: {"similarity_score": -0.4, "verdict": "Fake", "reason": "Other street"} hope it helps'

    result = compare_resolution_evidence(make_complaint(), proof())

    assert result["ai_verdict"] == "LIKELY_FAKE"
    assert result["ai_score"] == 0.0


def test_comparison_reason_is_optional(make_complaint, gemini):
    gemini["text"] = '{"similarity_score": 0.5, "verdict": "uncertain"}'

    result = compare_resolution_evidence(make_complaint(), proof())

    assert result == {"ai_score": 0.5, "ai_verdict": "UNCERTAIN", "ai_reason": ""}


@pytest.mark.parametrize(
    "text",
    [
        "",
        "not json at all",
        "[1, 2]",
        "null",
        '"LIKELY_MATCH"',
        '{"similarity_score": 0.9, "reason": "no verdict"}',
        '{"similarity_score": 0.9, "verdict": "probably"}',
        '{"similarity_score": "high", "verdict": "LIKELY_MATCH"}',
    ],
)
def test_comparison_rejects_unusable_output(make_complaint, gemini, text):
    gemini["text"] = text

    with pytest.raises(AIVisionError):
        compare_resolution_evidence(make_complaint(), proof())


def test_classification_normalizes_fields(app, gemini):
    gemini["text"] = '{"category": "waste", "priority": "CRITICAL", "summary": "  Overflowing bin near school. "}'

    result = classify_complaint_text("Garbage", "Bin overflowing for days")

    assert result == {"category": "Sanitation", "priority": "critical", "summary": "Overflowing bin near school."}


def test_classification_falls_back_for_unknown_values(app, gemini):
    gemini["text"] = '{"category": "Astrology", "priority": "urgent", "summary": "Odd request."}'

    result = classify_complaint_text("Stars", "Stars misaligned")

    assert result["category"] == "General"
    assert result["priority"] == "medium"


@pytest.mark.parametrize("text", ['{"category": "Roads", "priority": "high"}', "[1, 2]", "null"])
def test_classification_rejects_unusable_output(app, gemini, text):
    gemini["text"] = text

    with pytest.raises(AIVisionError):
        classify_complaint_text("Pothole", "Deep pothole")


def test_classify_complaint_survives_non_object_payload(make_complaint, gemini):
    complaint = make_complaint()
    gemini["text"] = "[1, 2]"

    assert classify_complaint(complaint.id) is None
    assert complaint.ai_summary is None
    assert ComplaintActivity.query.filter_by(complaint_id=complaint.id, activity_type="ai_analyzed").count() == 0


def test_classify_endpoint_accepts_when_ai_returns_garbage(client, gemini):
    created = client.post(
        "/api/complaints",
        json={
            "user_id": "citizen-1",
            "title": "Streetlight out",
            "description": "Dark lane behind market",
            "category": "Electricity",
            "location": {"lat": 18.52, "lng": 73.85},
            "attachments": [{"url": "https://cdn.example.org/lamp.jpg"}],
        },
    ).get_json()
    gemini["text"] = "null"

    response = client.post(
        f"/api/complaints/{created['id']}/classify",
        headers={"X-Actor-Id": "official-1", "X-Actor-Role": "official"},
    )

    assert response.status_code == 202


def test_missing_api_key_raises(app, monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    app.config["GEMINI_API_KEY"] = ""

    with pytest.raises(AIVisionError):
        ai_vision._client(5)
