"""
Inference clients for the diagnosis and chatbot endpoints.

Providers:
  - gateway: OpenAI-compatible chat-completions endpoint over httpx
  - gemini:  Google Gemini through the google-genai SDK
  - mock:    deterministic heuristic analysis for local development

Each client returns the model's raw text. Parsing and validation happen in
json_utils; upstream failures are mapped to the UpstreamError family here.
"""
import json
import logging
import re
from typing import Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import Settings
from .errors import ServiceNotConfiguredError, UpstreamError, upstream_error_for_status
from .formatters import build_diagnosis_messages
from .models import PatientAttributes
from .prompts import CHAT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


def _message_content(data: dict) -> str:
    """Pull choices[0].message.content out of a chat-completions payload."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""


class ChatCompletionsClient:
    """HTTP client for an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def complete(self, messages: list[dict], failure_detail: str, **options) -> str:
        """Send messages and return the first choice's content.

        Raises:
            ServiceNotConfiguredError: no API key
            UpstreamRateLimitError: upstream returned 429
            UpstreamPaymentRequiredError: upstream returned 402
            UpstreamError: any other upstream failure
        """
        if not self.api_key:
            raise ServiceNotConfiguredError()

        payload = {"model": self.model, "messages": messages, **options}
        try:
            response = await self.client.post(
                self.url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TimeoutException:
            logger.error(f"AI endpoint timed out after {self.timeout}s")
            raise UpstreamError(failure_detail)
        except httpx.RequestError as e:
            logger.error(f"AI endpoint connection error: {e}")
            raise UpstreamError(failure_detail)

        if response.status_code >= 400:
            logger.error(f"AI Gateway error: {response.status_code}")
            raise upstream_error_for_status(response.status_code, failure_detail)

        try:
            data = response.json()
        except ValueError:
            logger.error("AI endpoint returned a non-JSON body")
            raise UpstreamError(failure_detail)

        return _message_content(data)

    async def close(self):
        await self.client.aclose()


class DiagnosisClient:
    """Interface: turn patient attributes into raw model text."""

    provider = "none"

    @property
    def configured(self) -> bool:
        return True

    async def analyze(self, patient: PatientAttributes) -> str:
        raise NotImplementedError

    async def close(self):
        pass


class GatewayDiagnosisClient(DiagnosisClient):
    provider = "gateway"

    def __init__(self, completions: ChatCompletionsClient):
        self.completions = completions

    @property
    def configured(self) -> bool:
        return self.completions.configured

    async def analyze(self, patient: PatientAttributes) -> str:
        return await self.completions.complete(
            build_diagnosis_messages(patient),
            failure_detail="AI analysis failed",
            response_format={"type": "json_object"},
        )

    async def close(self):
        await self.completions.close()


class GeminiDiagnosisClient(DiagnosisClient):
    provider = "gemini"

    def __init__(self, api_key: Optional[str], model: str, timeout: float = DEFAULT_TIMEOUT):
        self.model = model
        self.timeout = timeout
        self.client = None
        if api_key:
            self.client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(timeout * 1000)),
            )
            logger.info(f"Gemini client initialized with model: {model} (timeout: {timeout}s)")

    @property
    def configured(self) -> bool:
        return self.client is not None

    async def analyze(self, patient: PatientAttributes) -> str:
        if self.client is None:
            raise ServiceNotConfiguredError()

        system, user = build_diagnosis_messages(patient)
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=user["content"],
                config=types.GenerateContentConfig(
                    system_instruction=system["content"],
                    response_mime_type="application/json",
                    temperature=0.2,
                ),
            )
        except genai_errors.APIError as e:
            logger.error(f"Gemini API error: {e.code} - {e.message}")
            raise upstream_error_for_status(e.code or 500, "AI analysis failed")
        except httpx.HTTPError as e:
            logger.error(f"Gemini connection error: {e}")
            raise UpstreamError("AI analysis failed")

        return response.text or ""


CARDIAC_PATTERN = re.compile(r"\b(mi|myocardial|heart|cardiac|coronary)\b", re.IGNORECASE)
DIABETES_PATTERN = re.compile(r"diabet", re.IGNORECASE)


class MockDiagnosisClient(DiagnosisClient):
    """Rule-of-thumb analysis with no model behind it.

    Produces the same JSON contract as a real model so the whole pipeline,
    including validation, runs unchanged.
    """

    provider = "mock"

    async def analyze(self, patient: PatientAttributes) -> str:
        cardiac = any(CARDIAC_PATTERN.search(c) for c in patient.conditions)
        diabetic = any(DIABETES_PATTERN.search(c) for c in patient.conditions)

        if cardiac:
            actions = [
                "Call ambulance immediately (suspected cardiac event)",
                "Administer aspirin 325mg if conscious and no allergy",
                "Monitor vital signs every 2 minutes",
                "Prepare for CPR - cardiac history present",
                "Do NOT administer nitroglycerin without BP reading",
            ]
            explanation = (
                f"Patient has documented cardiac history. Combined with age ({patient.age}), "
                "any cardiac symptoms warrant immediate emergency response."
            )
        else:
            actions = [
                "Monitor blood pressure",
                "Check blood glucose levels",
                "Assess consciousness and responsiveness",
                "Prepare emergency contact information",
                "Monitor for allergic reactions",
            ]
            explanation = (
                "Patient presents with chronic conditions requiring careful medication "
                "management. Monitor for drug interactions between current medications."
            )

        recommendations = [
            {
                "medication": f"Avoid {allergen}",
                "reason": "Documented allergy",
                "warning": "Do not administer",
            }
            for allergen in patient.allergies
        ]

        analysis = {
            "triageLevel": "urgent" if cardiac else "stable",
            "probableConditions": [
                {
                    "condition": "Acute Coronary Syndrome" if cardiac else "Hypertensive Crisis",
                    "confidence": 72 if cardiac else 45,
                    "severity": "High" if cardiac else "Moderate",
                },
                {
                    "condition": "Diabetic Emergency" if diabetic else "Cardiac Arrhythmia",
                    "confidence": 58 if diabetic else 38,
                    "severity": "Moderate",
                },
                {"condition": "Medication Interaction", "confidence": 34, "severity": "Low-Moderate"},
            ],
            "immediateActions": actions,
            "medicationRecommendations": recommendations,
            "explanation": explanation,
        }
        return json.dumps(analysis)


class ChatClient:
    """Companion chatbot: fixed system instruction plus the caller's history."""

    def __init__(self, completions: ChatCompletionsClient):
        self.completions = completions

    @property
    def configured(self) -> bool:
        return self.completions.configured

    async def reply(self, messages: list[dict]) -> str:
        content = await self.completions.complete(
            [{"role": "system", "content": CHAT_SYSTEM_PROMPT}, *messages],
            failure_detail="An error occurred processing your request",
            max_tokens=1000,
            temperature=0.7,
        )
        if not content:
            logger.error("Chat completion returned no content")
            raise UpstreamError("An error occurred processing your request")
        return content

    async def close(self):
        await self.completions.close()


def build_diagnosis_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> DiagnosisClient:
    """Create the diagnosis client for the configured provider."""
    if settings.ai_provider == "mock":
        return MockDiagnosisClient()
    if settings.ai_provider == "gemini":
        return GeminiDiagnosisClient(
            settings.gemini_api_key,
            settings.gemini_model,
            timeout=settings.model_timeout_seconds,
        )
    return GatewayDiagnosisClient(
        ChatCompletionsClient(
            settings.ai_gateway_url,
            settings.ai_gateway_api_key,
            settings.diagnosis_model,
            timeout=settings.model_timeout_seconds,
            transport=transport,
        )
    )


def build_chat_client(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> ChatClient:
    return ChatClient(
        ChatCompletionsClient(
            settings.chat_api_url,
            settings.openai_api_key,
            settings.chat_model,
            timeout=settings.model_timeout_seconds,
            transport=transport,
        )
    )
