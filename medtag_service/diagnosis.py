"""
AI diagnosis request pipeline.

One request moves through:

    Received -> Authenticated -> RateChecked -> RoleChecked -> InputValidated
             -> ModelInvoked -> ResponseValidated -> Logged -> Returned

A failing guard (authentication, rate limit, role, input) rejects the
request on the spot. Nothing later runs, so no model call is made and no
audit record is written.
"""
import logging
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import ValidationError

from .access_control import RoleGate, authenticate
from .audit import AuditLogger
from .errors import AuthorizationError, InvalidInputError, MedTagError, ServiceNotConfiguredError
from .inference_client import DiagnosisClient
from .json_utils import load_request_body, parse_diagnosis
from .models import DiagnosisRequest, DiagnosisResult, PatientAttributes
from .rate_limiter import RateLimitManager
from .structured_logging import mask_user_id
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

ENDPOINT = "ai-diagnosis"
REQUIRED_FIELDS = ("name", "age", "bloodType")


class DiagnosisStage(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    RATE_CHECKED = "rate_checked"
    ROLE_CHECKED = "role_checked"
    INPUT_VALIDATED = "input_validated"
    MODEL_INVOKED = "model_invoked"
    RESPONSE_VALIDATED = "response_validated"
    LOGGED = "logged"
    RETURNED = "returned"


def validate_patient_data(payload: Any) -> PatientAttributes:
    """Check the request body carries usable patient attributes.

    Raises:
        InvalidInputError: patientData missing, or required fields missing/invalid
    """
    patient_data = payload.get("patientData") if isinstance(payload, dict) else None
    if not patient_data:
        raise InvalidInputError("Patient data required")

    if not isinstance(patient_data, dict):
        raise InvalidInputError("Invalid patient data structure")

    for field in REQUIRED_FIELDS:
        value = patient_data.get(field)
        if value is None or value == "":
            raise InvalidInputError("Invalid patient data structure")

    try:
        return PatientAttributes.model_validate(patient_data)
    except ValidationError as e:
        logger.warning(f"Patient data rejected: {e.errors()[0].get('msg', 'invalid')}")
        raise InvalidInputError("Invalid patient data structure")


class DiagnosisService:
    """Runs the guarded diagnosis pipeline for one request at a time."""

    def __init__(
        self,
        store: SupabaseClient,
        rate_limits: RateLimitManager,
        client: DiagnosisClient,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.rate_limits = rate_limits
        self.client = client
        self.role_gate = RoleGate(store)
        self.audit = audit or AuditLogger(store)

    async def diagnose(
        self, auth_header: Optional[str], body: bytes, state: Optional[Any] = None
    ) -> Tuple[DiagnosisResult, dict]:
        """Run the pipeline. Returns the validated result and rate limit headers.

        Raises:
            MedTagError: tagged with the stage that rejected the request
        """
        stage = DiagnosisStage.RECEIVED
        try:
            user_id = await authenticate(self.store, auth_header, state)
            stage = DiagnosisStage.AUTHENTICATED
            logger.info(f"User {mask_user_id(user_id)} requesting AI diagnosis")

            headers = self.rate_limits.check_rate_limit(ENDPOINT, user_id)
            stage = DiagnosisStage.RATE_CHECKED

            if not await self.role_gate.authorize(user_id, auth_header):
                raise AuthorizationError()
            stage = DiagnosisStage.ROLE_CHECKED

            request = DiagnosisRequest(
                patient=validate_patient_data(load_request_body(body)),
                requesting_user_id=user_id,
            )
            if not self.client.configured:
                logger.error(f"AI provider '{self.client.provider}' is not configured")
                raise ServiceNotConfiguredError()
            stage = DiagnosisStage.INPUT_VALIDATED

            patient = request.patient
            logger.info(f"Processing AI diagnosis for patient: {patient.name}")
            raw = await self.client.analyze(patient)
            stage = DiagnosisStage.MODEL_INVOKED

            result = parse_diagnosis(raw)
            stage = DiagnosisStage.RESPONSE_VALIDATED
        except MedTagError as e:
            e.stage = stage.value
            logger.warning(f"AI diagnosis rejected after stage '{stage.value}': {e.status_code} {e.detail}")
            raise

        await self.audit.record_diagnosis(auth_header, user_id, patient.name, result.triage_level)

        logger.info(f"AI diagnosis completed for patient {patient.name}: {result.triage_level}")
        return result, headers
