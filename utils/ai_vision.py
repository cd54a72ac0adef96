"""Gemini integration for resolution-proof plausibility checks and complaint triage."""
import json
import os
import re
from typing import Any, Dict, List, Optional

from flask import current_app
from google import genai
from google.genai import types

from models import AI_VERDICTS, COMPLAINT_CATEGORIES, COMPLAINT_PRIORITIES


class AIVisionError(Exception):
    """Raised when Gemini cannot return a valid result."""


def _normalize_verdict(value: str | None) -> str | None:
    if not value:
        return None
    normalized = str(value).strip().upper().replace(" ", "_")
    mapping = {
        "LIKELY_MATCH": "LIKELY_MATCH",
        "MATCH": "LIKELY_MATCH",
        "VERIFIED": "LIKELY_MATCH",
        "UNCERTAIN": "UNCERTAIN",
        "LIKELY_FAKE": "LIKELY_FAKE",
        "FAKE": "LIKELY_FAKE",
        "REJECTED": "LIKELY_FAKE",
    }
    verdict = mapping.get(normalized)
    return verdict if verdict in AI_VERDICTS else None


def _normalize_category(value: str | None) -> str:
    if not value:
        return "General"
    lookup = {c.lower(): c for c in COMPLAINT_CATEGORIES}
    lookup["waste"] = "Sanitation"
    return lookup.get(str(value).strip().lower(), "General")


def _normalize_priority(value: str | None) -> str | None:
    if not value:
        return None
    normalized = str(value).strip().lower()
    return normalized if normalized in COMPLAINT_PRIORITIES else None


def _first_json_block(text: str) -> str:
    """Extract the first JSON object block from free-form text."""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text


def _safe_json_loads(raw_text: str) -> Dict[str, Any]:
    """Parse JSON robustly, tolerating leading/trailing noise or code fences."""
    cleaned = raw_text.strip()
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", cleaned).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        block = _first_json_block(cleaned)
        return json.loads(block)


def _response_payload(response) -> Dict[str, Any]:
    try:
        payload = _safe_json_loads(_response_text(response))
    except json.JSONDecodeError as exc:
        raise AIVisionError("Gemini returned non-JSON output") from exc
    if not isinstance(payload, dict):
        raise AIVisionError("Gemini returned a non-object JSON payload")
    return payload


def _coerce_str(value: Any, field: str, required: bool = True) -> str | None:
    if value is None:
        if required:
            raise AIVisionError(f"Missing required field: {field}")
        return None
    text = str(value).strip()
    if required and not text:
        raise AIVisionError(f"Missing required field: {field}")
    return text


def _coerce_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise AIVisionError("Invalid numeric field: similarity_score")
    if score > 1:
        # Some responses come back on a 0-100 scale.
        score = score / 100.0
    return max(0.0, min(1.0, score))


def _attachment_url(attachment: Optional[Dict]) -> Optional[str]:
    if not attachment:
        return None
    return attachment.get("url") or attachment.get("webViewLink") or attachment.get("file_id")


def _image_parts(urls: List[str]) -> List[types.Part]:
    parts = []
    for url in urls:
        lowered = url.lower().split("?")[0]
        if lowered.endswith(".png"):
            mime_type = "image/png"
        elif lowered.endswith(".webp"):
            mime_type = "image/webp"
        elif lowered.endswith((".jpg", ".jpeg")):
            mime_type = "image/jpeg"
        else:
            continue
        parts.append(types.Part.from_uri(file_uri=url, mime_type=mime_type))
    return parts


def _client(timeout_seconds: float) -> genai.Client:
    api_key = current_app.config.get("GEMINI_API_KEY") or os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise AIVisionError("GEMINI_API_KEY is not configured")
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
    )


def _response_text(response) -> str:
    raw_text = (response.text or "").strip()
    if not raw_text and getattr(response, "candidates", None):
        try:
            parts = response.candidates[0].content.parts if response.candidates else []
            raw_text = "".join(getattr(p, "text", "") or "" for p in parts).strip()
        except (AttributeError, IndexError):
            raw_text = ""
    if not raw_text:
        raise AIVisionError("Gemini returned empty response")
    return raw_text


def build_comparison_prompt(complaint: Dict[str, Any], proof: Dict[str, Any]) -> str:
    return (
        "You are an auditor for a municipal grievance platform. An official claims the citizen complaint below "
        "has been resolved and submitted proof. Judge whether the proof is logically consistent with the "
        "complaint: same kind of location and infrastructure, the reported defect visibly addressed, no signs of a "
        "reused, unrelated, or staged photo. This is a reasoning judgment, not a pixel comparison. "
        f"Complaint category: {complaint.get('category') or 'General'}. "
        f"Complaint title: {complaint.get('title') or ''}. "
        f"Complaint description: {complaint.get('description') or ''}. "
        f"Original photo: {complaint.get('image_url') or 'not provided'}. "
        f"Resolution proof photo: {proof.get('image_url') or 'not provided'}. "
        f"Official's resolution note: {proof.get('description') or ''}. "
        "Return strict JSON with fields: similarity_score (0-1), "
        "verdict (LIKELY_MATCH, UNCERTAIN, LIKELY_FAKE), reason (one or two sentences). "
        "Do not include markdown. JSON only. "
        "Example JSON: "
        "{"
        "\"similarity_score\": 0.82,"
        "\"verdict\": \"LIKELY_MATCH\","
        "\"reason\": \"The proof shows the same road stretch with the pothole filled and fresh asphalt.\""
        "}"
    )


def compare_resolution_evidence(complaint, proof: Dict[str, Any], timeout_seconds: Optional[float] = None) -> Dict[str, Any]:
    """Score how plausibly the resolution proof matches the original complaint.

    Returns ``{"ai_score", "ai_verdict", "ai_reason"}``. Raises AIVisionError on any
    provider, timeout, or parsing failure; callers decide how to degrade.
    """
    timeout = timeout_seconds if timeout_seconds is not None else float(current_app.config.get("AI_TIMEOUT_SECONDS", 5))
    original_url = _attachment_url((complaint.attachments or [None])[0])
    proof_url = _attachment_url(proof.get("attachment"))
    context = {
        "category": complaint.category,
        "title": complaint.title,
        "description": complaint.description,
        "image_url": original_url,
    }
    prompt = build_comparison_prompt(context, {"image_url": proof_url, "description": proof.get("description")})
    model_name = current_app.config.get("GEMINI_VISION_MODEL", "gemini-2.5-flash")

    client = _client(timeout)
    current_app.logger.info(
        "Dispatching Gemini resolution comparison",
        extra={"complaint_id": str(complaint.id), "model": model_name, "has_original_image": bool(original_url)},
    )
    try:
        response = client.models.generate_content(
            model=model_name,
            contents=[*_image_parts([u for u in (original_url, proof_url) if u]), types.Part.from_text(text=prompt)],
            config=types.GenerateContentConfig(response_mime_type="application/json"),
        )
    except Exception as exc:  # pragma: no cover - relies on remote service
        raise AIVisionError("Gemini comparison request failed") from exc

    payload = _response_payload(response)
    verdict = _normalize_verdict(payload.get("verdict"))
    if not verdict:
        raise AIVisionError("Gemini did not return a valid verdict")
    return {
        "ai_score": _coerce_score(payload.get("similarity_score")),
        "ai_verdict": verdict,
        "ai_reason": _coerce_str(payload.get("reason"), "reason", required=False) or "",
    }


def build_classification_prompt(title: str, description: str) -> str:
    categories = ", ".join(COMPLAINT_CATEGORIES)
    return (
        "You are a city operations manager triaging citizen complaints. "
        f"Complaint title: {title}. Complaint description: {description}. "
        "Return strict JSON with fields: "
        f"category (one of {categories}), priority (low, medium, high, critical), "
        "summary (a concise, professional summary for an official report). "
        "Rules: fire, sparks, crime, or major flooding is critical; potholes, sewage, or no water is high. "
        "Do not include markdown. JSON only."
    )


def classify_complaint_text(title: str, description: str, timeout_seconds: Optional[float] = None) -> Dict[str, Any]:
    timeout = timeout_seconds if timeout_seconds is not None else float(current_app.config.get("AI_TIMEOUT_SECONDS", 5))
    model_name = current_app.config.get("GEMINI_TEXT_MODEL", "gemini-2.5-flash")
    client = _client(timeout)
    try:
        response = client.models.generate_content(
            model=model_name,
            contents=[types.Part.from_text(text=build_classification_prompt(title, description))],
            config=types.GenerateContentConfig(response_mime_type="application/json"),
        )
    except Exception as exc:  # pragma: no cover - relies on remote service
        raise AIVisionError("Gemini classification request failed") from exc

    payload = _response_payload(response)
    return {
        "category": _normalize_category(payload.get("category")),
        "priority": _normalize_priority(payload.get("priority")) or "medium",
        "summary": _coerce_str(payload.get("summary"), "summary"),
    }
