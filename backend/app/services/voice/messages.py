"""
Language-aware pieces of a reminder call script.
"""
from __future__ import annotations

from typing import Optional

DEFAULT_OWNER_NAME = "Sir/Madam"
DEFAULT_VEHICLE_NUMBER = "your vehicle"
DEFAULT_LANGUAGE_INSTRUCTION = "Speak in clear, professional English."

# Spoken labels per document and language. Regional scripts keep the
# English terms since that is what appears on the documents.
VOICE_DOCUMENT_LABELS: dict[str, dict[str, str]] = {
    "insurance": {"en": "Insurance", "hi": "Insurance", "ta": "Insurance", "te": "Insurance"},
    "pucc": {"en": "PUCC", "hi": "PUCC", "ta": "PUCC", "te": "PUCC"},
    "fitness": {
        "en": "Fitness Certificate",
        "hi": "Fitness Certificate",
        "ta": "Fitness Certificate",
        "te": "Fitness Certificate",
    },
    "road_tax": {"en": "Road Tax", "hi": "Road Tax", "ta": "Road Tax", "te": "Road Tax"},
}

_EXPIRED_PHRASES = {
    "hi": "expire ho gaya hai",
    "ta": "expire aagiruchu",
    "te": "expire ayyindi",
}

_UPCOMING_PHRASES = {
    "hi": "{days} din mein expire hone wala hai",
    "ta": "{days} naal la expire aagum",
    "te": "{days} rojullo expire avthundi",
}


def document_label(document_type: str, language: str) -> str:
    labels = VOICE_DOCUMENT_LABELS.get(document_type)
    if not labels:
        return document_type
    return labels.get(language) or labels.get("en") or document_type


def days_message(days_until_expiry: int, language: str) -> str:
    if days_until_expiry <= 0:
        return _EXPIRED_PHRASES.get(language, "has expired")
    days = abs(days_until_expiry)
    return _UPCOMING_PHRASES.get(language, "will expire in {days} days").format(days=days)


def fill_placeholders(
    template: str,
    owner_name: Optional[str],
    vehicle_number: Optional[str],
    doc_label: str,
    days_text: str,
) -> str:
    return (
        template
        .replace("{{owner_name}}", owner_name or DEFAULT_OWNER_NAME)
        .replace("{{vehicle_number}}", vehicle_number or DEFAULT_VEHICLE_NUMBER)
        .replace("{{document_type}}", doc_label)
        .replace("{{days_message}}", days_text)
    )


def default_welcome(owner_name: Optional[str], vehicle_number: Optional[str]) -> str:
    owner = owner_name or DEFAULT_OWNER_NAME
    vehicle = vehicle_number or DEFAULT_VEHICLE_NUMBER
    return f"Hello {owner}! This is VinDoc calling about your vehicle {vehicle}."
