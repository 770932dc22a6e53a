import json
import logging
import re

import google.generativeai as genai

import config

logger = logging.getLogger(__name__)

genai.configure(api_key=config.GOOGLE_API_KEY)
model = genai.GenerativeModel(config.GEMINI_MODEL)

ISSUE_TYPES = [
    "broken-ramp",
    "blocked-path",
    "broken-elevator",
    "missing-signage",
    "uneven-surface",
    "door-access",
    "parking",
    "restroom",
    "lighting",
    "other",
]

FALLBACK = {
    "type": "other",
    "severity": "low",
    "actions": ["Manual review required"],
}


def suggest_classification(description: str):
    """Ask Gemini for an issue type, severity and next actions for a campus report."""

    prompt = f"""
    You are a campus accessibility triage assistant for maintenance staff.

    Analyze this report: "{description}"

    Respond ONLY in JSON format with fields:
    {{
      "type": "...",
      "severity": "...",
      "actions": ["...", "...", "..."]
    }}

    Type must be one of:
    {", ".join(ISSUE_TYPES)}

    Severity must be one of:
    low, medium, high
    """

    if not config.GOOGLE_API_KEY:
        return {**FALLBACK, "error": "GOOGLE_API_KEY not configured"}

    try:
        response = model.generate_content(prompt)
        text = response.text.strip()
    except Exception as e:
        logger.warning("Gemini triage failed: %s", e)
        return {**FALLBACK, "error": str(e)}

    # Extract JSON from response safely
    json_match = re.search(r"\{.*\}", text, re.DOTALL)
    if not json_match:
        return {**FALLBACK, "error": "Invalid AI response format"}

    try:
        suggestion = json.loads(json_match.group())
    except ValueError:
        return {**FALLBACK, "error": "Invalid AI response format"}

    severity = str(suggestion.get("severity", "")).lower()
    issue_type = str(suggestion.get("type", "")).lower()
    return {
        "type": issue_type if issue_type in ISSUE_TYPES else "other",
        "severity": severity if severity in ("low", "medium", "high") else "low",
        "actions": suggestion.get("actions") or FALLBACK["actions"],
    }
