"""
Text formatting utilities for patient data.

Converts patient attributes into the prompt messages sent to the
diagnosis model.
"""
from .input_sanitization import sanitize_prompt_field, sanitize_prompt_list
from .models import PatientAttributes
from .prompts import DIAGNOSIS_SYSTEM_PROMPT, DIAGNOSIS_USER_PROMPT


def format_list(items: list[str]) -> str:
    """Join a list attribute for display, with a placeholder when empty."""
    cleaned = sanitize_prompt_list(items)
    return ", ".join(cleaned) if cleaned else "None reported"


def format_patient_prompt(patient: PatientAttributes) -> str:
    """Fill the user prompt with sanitized patient attributes."""
    return DIAGNOSIS_USER_PROMPT.format(
        name=sanitize_prompt_field(patient.name),
        age=patient.age,
        blood_type=patient.blood_type or "Unknown",
        allergies=format_list(patient.allergies),
        medications=format_list(patient.medications),
        conditions=format_list(patient.conditions),
    )


def build_diagnosis_messages(patient: PatientAttributes) -> list[dict]:
    """Chat messages for one diagnosis request."""
    return [
        {"role": "system", "content": DIAGNOSIS_SYSTEM_PROMPT},
        {"role": "user", "content": format_patient_prompt(patient)},
    ]


def format_medication(name: str, dosage: str, frequency: str) -> str:
    """Render a medication row the way responders read it."""
    parts = [p.strip() for p in (name, dosage, frequency) if p and p.strip()]
    return " - ".join(parts)
