"""
MedTag Service - FastAPI Backend
Emergency patient tag lookup with guarded AI triage

Architecture:
  - Supabase = auth, patient records, roles and access logs (row-level policies)
  - Inference provider (gateway / Gemini / mock) = triage suggestion
  - Chat-completions model = companion chatbot
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional
import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .access_control import authenticate
from .audit import ACTION_VIEW_PATIENT, AuditLogger
from .chatbot import ChatService
from .config import Settings, get_settings
from .diagnosis import DiagnosisService
from .errors import InvalidInputError
from .identifiers import extract_patient_id, patient_url
from .inference_client import (
    ChatClient,
    DiagnosisClient,
    build_chat_client,
    build_diagnosis_client,
)
from .models import (
    ChatResponse,
    DiagnosisResponse,
    PatientLookupResponse,
    ResolveIdentifierRequest,
    ResolveIdentifierResponse,
)
from .rate_limiter import RateLimitManager, limits_from_settings
from .structured_logging import log_request, setup_logging, start_request
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: SupabaseClient
    rate_limits: RateLimitManager
    diagnosis_client: DiagnosisClient
    chat_client: ChatClient
    audit: AuditLogger
    diagnosis: DiagnosisService
    chat: ChatService

    async def close(self):
        await self.store.close()
        await self.diagnosis_client.close()
        await self.chat_client.close()


def build_services(
    settings: Settings,
    store: Optional[SupabaseClient] = None,
    rate_limits: Optional[RateLimitManager] = None,
    diagnosis_client: Optional[DiagnosisClient] = None,
    chat_client: Optional[ChatClient] = None,
) -> Services:
    """Wire the service graph. Any piece may be supplied pre-built."""
    store = store or SupabaseClient(
        settings.supabase_url,
        settings.supabase_anon_key,
        timeout=settings.store_timeout_seconds,
    )
    rate_limits = rate_limits or RateLimitManager(
        limits=limits_from_settings(
            settings.rate_limit_max_requests, settings.rate_limit_window_seconds
        )
    )
    diagnosis_client = diagnosis_client or build_diagnosis_client(settings)
    chat_client = chat_client or build_chat_client(settings)
    audit = AuditLogger(store)

    return Services(
        settings=settings,
        store=store,
        rate_limits=rate_limits,
        diagnosis_client=diagnosis_client,
        chat_client=chat_client,
        audit=audit,
        diagnosis=DiagnosisService(store, rate_limits, diagnosis_client, audit),
        chat=ChatService(store, rate_limits, chat_client),
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting MedTag service...")
        if not services.store.configured:
            logger.warning("SUPABASE_URL / SUPABASE_ANON_KEY not set; authenticated routes will fail.")
        if not services.diagnosis_client.configured:
            logger.warning(f"AI provider '{settings.ai_provider}' has no credentials; /ai-diagnosis will return 500.")
        logger.info(f"Ready to serve requests (AI provider: {settings.ai_provider}).")
        yield
        logger.info("Shutting down...")
        await services.close()

    app = FastAPI(
        title="MedTag Service",
        description="Emergency patient tag lookup and AI triage API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "apikey", "x-client-info"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Middleware for request ID tracking and logging."""
        start_time = time.time()
        request_id = start_request(request.headers.get("X-Request-ID"))

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.exception(f"Unexpected error on {request.url.path}")
            response = JSONResponse({"error": str(exc) or "Unknown error"}, status_code=500)

        duration_ms = (time.time() - start_time) * 1000

        if request.url.path not in ["/health", "/docs", "/openapi.json"]:
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                user_id=getattr(request.state, "user_id", None),
            )

        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            {"error": exc.detail},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse({"error": message}, status_code=400)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "ai_provider": settings.ai_provider,
            "diagnosis_configured": services.diagnosis_client.configured,
            "chat_configured": services.chat_client.configured,
            "store_configured": services.store.configured,
        }

    @app.post("/ai-diagnosis", response_model=DiagnosisResponse)
    async def ai_diagnosis(request: Request):
        """Guarded AI triage for a patient's attributes."""
        result, headers = await services.diagnosis.diagnose(
            request.headers.get("Authorization"), await request.body(), request.state
        )
        response = DiagnosisResponse(analysis=result)
        return JSONResponse(
            response.model_dump(by_alias=True, exclude_none=True),
            headers=headers,
        )

    @app.post("/chatbot", response_model=ChatResponse)
    async def chatbot(request: Request):
        """Companion health-question chatbot."""
        message, headers = await services.chat.reply(
            request.headers.get("Authorization"), await request.body(), request.state
        )
        return JSONResponse(ChatResponse(message=message).model_dump(), headers=headers)

    @app.post("/patients/resolve", response_model=ResolveIdentifierResponse)
    async def resolve_identifier(request: dict):
        """Turn scanned or pasted input into a canonical patient id."""
        try:
            request_model = ResolveIdentifierRequest.model_validate(request)
        except ValidationError as e:
            raise InvalidInputError(str(e.errors()[0].get("msg", "Invalid request")))

        patient_id = extract_patient_id(request_model.input)
        if patient_id is None:
            raise InvalidInputError("Invalid patient identifier")

        return ResolveIdentifierResponse(
            patient_id=patient_id,
            patient_url=patient_url(settings.public_app_url, patient_id),
        ).model_dump(by_alias=True)

    @app.get("/patients/{patient_id}", response_model=PatientLookupResponse)
    async def get_patient(patient_id: str, request: Request):
        """Load a patient's triage profile. Visibility is decided by the store's policies."""
        auth_header = request.headers.get("Authorization")
        user_id = await authenticate(services.store, auth_header, request.state)

        resolved = extract_patient_id(patient_id)
        if resolved is None:
            raise InvalidInputError("Invalid patient identifier")

        patient = await services.store.fetch_patient(auth_header, resolved)
        await services.audit.record(
            auth_header,
            user_id,
            action=ACTION_VIEW_PATIENT,
            resource="patients",
            patient_id=resolved,
        )

        return PatientLookupResponse(patient_id=resolved, patient=patient).model_dump(
            by_alias=True
        )

    return app


def _configure_logging():
    settings = get_settings()
    setup_logging(level=settings.log_level, use_json=settings.log_json)


_configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
