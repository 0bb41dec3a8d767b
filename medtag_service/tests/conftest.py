"""Shared fixtures: an in-memory Supabase behind httpx.MockTransport, a fake
model client and a controllable clock."""
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from medtag_service.config import Settings
from medtag_service.inference_client import ChatClient, ChatCompletionsClient, DiagnosisClient
from medtag_service.main import build_services, create_app
from medtag_service.rate_limiter import RateLimitManager
from medtag_service.supabase_client import SupabaseClient

SUPABASE_URL = "https://db.example.test"
CHAT_URL = "https://chat.example.test/v1/chat/completions"

RESPONDER_ID = "11111111-1111-4111-8111-111111111111"
ADMIN_ID = "22222222-2222-4222-8222-222222222222"
PATIENT_USER_ID = "33333333-3333-4333-8333-333333333333"
PATIENT_ID = "9b2c4e1a-5f3d-4c8e-a1b2-3c4d5e6f7a8b"

RESPONDER_AUTH = "Bearer responder-token"
ADMIN_AUTH = "Bearer admin-token"
PATIENT_AUTH = "Bearer patient-token"

VALID_ANALYSIS = json.dumps({
    "triageLevel": "urgent",
    "probableConditions": [
        {"condition": "Acute Coronary Syndrome", "confidence": 72, "severity": "High"}
    ],
    "immediateActions": ["Call ambulance immediately"],
    "medicationRecommendations": [
        {"medication": "Aspirin", "reason": "Suspected ACS", "warning": "Check bleeding risk"}
    ],
    "explanation": "Cardiac history with current symptoms.",
})

PATIENT_PAYLOAD = {
    "patientData": {
        "name": "John Anderson",
        "age": 45,
        "bloodType": "O+",
        "allergies": ["Penicillin"],
        "medications": ["Metformin", "Lisinopril"],
        "conditions": ["Type 2 Diabetes", "Previous MI (2020)"],
    }
}


class FakeSupabase:
    """Just enough of GoTrue + PostgREST to exercise the service."""

    def __init__(self):
        self.tokens = {
            RESPONDER_AUTH: {"id": RESPONDER_ID, "email": "responder@example.test"},
            ADMIN_AUTH: {"id": ADMIN_ID, "email": "admin@example.test"},
            PATIENT_AUTH: {"id": PATIENT_USER_ID, "email": "patient@example.test"},
        }
        self.roles = {
            RESPONDER_ID: ["medical_responder"],
            ADMIN_ID: ["patient", "hospital_admin"],
            PATIENT_USER_ID: ["patient"],
        }
        self.tables = {
            "patients": [
                {"id": PATIENT_ID, "blood_type": "O+", "user_id": PATIENT_USER_ID, "is_active": True},
            ],
            "profiles": [
                {"id": PATIENT_USER_ID, "full_name": "John Anderson", "date_of_birth": "1980-03-15"},
            ],
            "allergies": [
                {"patient_id": PATIENT_ID, "allergen": "Penicillin"},
            ],
            "medications": [
                {"patient_id": PATIENT_ID, "medication_name": "Metformin", "dosage": "500mg",
                 "frequency": "twice daily", "is_active": True},
                {"patient_id": PATIENT_ID, "medication_name": "Warfarin", "dosage": "5mg",
                 "frequency": "daily", "is_active": False},
            ],
            "medical_history": [
                {"patient_id": PATIENT_ID, "condition": "Type 2 Diabetes"},
            ],
        }
        self.inserts: list[tuple[str, dict]] = []
        self.fail_roles = False
        self.fail_inserts = False
        self.failing_tables: set[str] = set()

    def _rows(self, table: str, params: httpx.QueryParams) -> list[dict]:
        rows = self.tables.get(table, [])
        for key, value in params.multi_items():
            if key == "select":
                continue
            expected = value.removeprefix("eq.")
            rows = [r for r in rows if str(r.get(key)).lower() == expected.lower()]
        return rows

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        auth = request.headers.get("Authorization")

        if request.headers.get("apikey") != "anon-key":
            return httpx.Response(401, json={"message": "No API key found in request"})

        if path == "/auth/v1/user":
            user = self.tokens.get(auth)
            if user is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=user)

        if not path.startswith("/rest/v1/"):
            return httpx.Response(404)
        table = path.rsplit("/", 1)[-1]

        if request.method == "POST":
            if self.fail_inserts:
                return httpx.Response(500, json={"message": "insert failed"})
            self.inserts.append((table, json.loads(request.content)))
            return httpx.Response(201)

        if table == "user_roles":
            if self.fail_roles:
                return httpx.Response(503, json={"message": "database unavailable"})
            user_id = request.url.params["user_id"].removeprefix("eq.")
            return httpx.Response(200, json=[{"role": r} for r in self.roles.get(user_id, [])])

        if table in self.failing_tables:
            return httpx.Response(500, json={"message": "boom"})
        return httpx.Response(200, json=self._rows(table, request.url.params))


class FakeDiagnosisClient(DiagnosisClient):
    provider = "fake"

    def __init__(self, response: str = VALID_ANALYSIS):
        self.response = response
        self.error = None
        self.calls = []

    async def analyze(self, patient):
        self.calls.append(patient)
        if self.error is not None:
            raise self.error
        return self.response


class FakeChatEndpoint:
    def __init__(self):
        self.requests: list[dict] = []
        self.status_code = 200
        self.reply = "Stay hydrated and rest."

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "upstream"}})
        return httpx.Response(200, json={
            "choices": [{"message": {"role": "assistant", "content": self.reply}}]
        })


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def store(fake_supabase):
    return SupabaseClient(
        SUPABASE_URL, "anon-key", transport=httpx.MockTransport(fake_supabase.handler)
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def diagnosis_client():
    return FakeDiagnosisClient()


@pytest.fixture
def chat_endpoint():
    return FakeChatEndpoint()


@pytest.fixture
def settings():
    return Settings(
        supabase_url=SUPABASE_URL,
        supabase_anon_key="anon-key",
        ai_provider="mock",
        openai_api_key="sk-test",
        chat_api_url=CHAT_URL,
        public_app_url="https://medtag.example.test",
    )


@pytest.fixture
def services(settings, store, clock, diagnosis_client, chat_endpoint):
    chat_client = ChatClient(ChatCompletionsClient(
        CHAT_URL, "sk-test", "gpt-4o-mini",
        transport=httpx.MockTransport(chat_endpoint.handler),
    ))
    return build_services(
        settings,
        store=store,
        rate_limits=RateLimitManager(clock=clock),
        diagnosis_client=diagnosis_client,
        chat_client=chat_client,
    )


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services), raise_server_exceptions=False)
