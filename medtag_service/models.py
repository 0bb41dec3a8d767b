"""
Pydantic request/response models for the MedTag service API.

The wire format is camelCase, matching the web client; Python attributes
stay snake_case.
"""
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator
from pydantic.alias_generators import to_camel


BloodType = Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
TriageLevel = Literal["critical", "urgent", "stable"]

PRIVILEGED_ROLES = frozenset({"medical_responder", "hospital_admin"})


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Patient ---

class PatientAttributes(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    age: StrictInt = Field(ge=0)
    blood_type: Optional[BloodType] = None
    allergies: list[str] = []
    medications: list[str] = []
    conditions: list[str] = []

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Patient name cannot be empty")
        return v.strip()

    @field_validator("allergies", "medications", "conditions", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v

    @field_validator("allergies")
    @classmethod
    def unique_allergies(cls, v: list[str]) -> list[str]:
        # Allergies are a set; keep first-seen order
        return list(dict.fromkeys(v))


class DiagnosisRequest(BaseModel):
    """One diagnosis attempt, as seen by the pipeline."""
    patient: PatientAttributes
    requesting_user_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --- Diagnosis result (model output) ---
# Strict: model output is rejected on type mismatch, never coerced, and
# only the camelCase field names are accepted.

class StrictCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, strict=True)


class ProbableCondition(StrictCamelModel):
    condition: str
    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    severity: Optional[str] = None


class MedicationRecommendation(StrictCamelModel):
    medication: str
    reason: Optional[str] = None
    warning: Optional[str] = None


class DiagnosisResult(StrictCamelModel):
    triage_level: TriageLevel
    probable_conditions: list[ProbableCondition]
    immediate_actions: list[str]
    medication_recommendations: Optional[list[MedicationRecommendation]] = None
    explanation: str = ""


class DiagnosisResponse(CamelModel):
    analysis: DiagnosisResult


# --- Chatbot ---

class ChatMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str


class ChatResponse(CamelModel):
    message: str


# --- Patient lookup ---

class ResolveIdentifierRequest(CamelModel):
    input: str


class ResolveIdentifierResponse(CamelModel):
    patient_id: str
    patient_url: str


class PatientLookupResponse(CamelModel):
    patient_id: str
    patient: PatientAttributes
