"""Tests for authentication, the role gate, audit records and log masking."""
import asyncio
import json
import logging
from types import SimpleNamespace

import pytest

from medtag_service.access_control import RoleGate, authenticate, has_privileged_role
from medtag_service.audit import AuditLogger
from medtag_service.errors import AuthenticationError, RoleLookupError
from medtag_service.structured_logging import (
    JSONFormatter,
    StructuredLogger,
    log_request,
    mask_fields,
    mask_user_id,
    start_request,
)
from medtag_service.tests.conftest import (
    ADMIN_ID,
    PATIENT_AUTH,
    PATIENT_USER_ID,
    RESPONDER_AUTH,
    RESPONDER_ID,
)


class TestHasPrivilegedRole:

    @pytest.mark.parametrize("roles,expected", [
        (["medical_responder"], True),
        (["hospital_admin"], True),
        (["patient", "hospital_admin"], True),
        (["patient"], False),
        ([], False),
        (["MEDICAL_RESPONDER"], False),
    ])
    def test_roles(self, roles, expected):
        assert has_privileged_role(roles) is expected


class TestAuthenticate:

    def test_returns_user_id(self, store):
        assert asyncio.run(authenticate(store, RESPONDER_AUTH)) == RESPONDER_ID

    def test_records_user_on_request_state(self, store):
        state = SimpleNamespace()
        asyncio.run(authenticate(store, RESPONDER_AUTH, state))
        assert state.user_id == RESPONDER_ID

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, store, header):
        with pytest.raises(AuthenticationError) as exc:
            asyncio.run(authenticate(store, header))
        assert exc.value.detail == "Authorization required"


class TestRoleGate:

    def test_responder(self, store):
        assert asyncio.run(RoleGate(store).authorize(RESPONDER_ID, RESPONDER_AUTH))

    def test_admin(self, store):
        assert asyncio.run(RoleGate(store).authorize(ADMIN_ID, RESPONDER_AUTH))

    def test_patient(self, store):
        assert not asyncio.run(RoleGate(store).authorize(PATIENT_USER_ID, PATIENT_AUTH))

    def test_lookup_failure_is_not_a_denial(self, store, fake_supabase):
        fake_supabase.fail_roles = True
        with pytest.raises(RoleLookupError):
            asyncio.run(RoleGate(store).authorize(RESPONDER_ID, RESPONDER_AUTH))


class TestAuditLogger:

    def test_record(self, store, fake_supabase):
        ok = asyncio.run(AuditLogger(store).record_diagnosis(
            RESPONDER_AUTH, RESPONDER_ID, "John Anderson", "critical"
        ))

        assert ok
        table, row = fake_supabase.inserts[0]
        assert table == "access_logs"
        assert row["action"] == "ai_diagnosis"
        assert row["metadata"] == {"patient_name": "John Anderson", "triage_level": "critical"}
        assert "patient_id" not in row

    def test_failure_returns_false(self, store, fake_supabase):
        fake_supabase.fail_inserts = True
        ok = asyncio.run(AuditLogger(store).record(
            RESPONDER_AUTH, RESPONDER_ID, action="view_patient", resource="patients"
        ))
        assert ok is False
        assert fake_supabase.inserts == []


class TestLogging:

    def test_mask_user_id(self):
        assert mask_user_id(RESPONDER_ID) == "11111111-xxxx"
        assert mask_user_id("") == "xxx"

    def test_structured_logger_masks_user_id(self, caplog):
        with caplog.at_level(logging.INFO, logger="medtag.test"):
            StructuredLogger("medtag.test").info("hello", user_id=RESPONDER_ID)

        record = caplog.records[0]
        assert record.data["user_id"] == "11111111-xxxx"

    def test_json_formatter(self):
        start_request("req-42")
        record = logging.LogRecord("medtag", logging.INFO, __file__, 1, "ping", None, None)
        record.data = {"path": "/ai-diagnosis"}

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "ping"
        assert entry["service"] == "medtag"
        assert entry["request_id"] == "req-42"
        assert entry["data"] == {"path": "/ai-diagnosis"}

    def test_start_request_mints_id_when_header_missing(self):
        minted = start_request(None)
        assert len(minted) == 8
        assert start_request("  ") != ""

    def test_start_request_caps_header_length(self):
        assert len(start_request("x" * 500)) == 64

    def test_mask_fields(self):
        masked = mask_fields({"user_id": RESPONDER_ID, "patient_id": None, "path": "/x"})
        assert masked == {"user_id": "11111111-xxxx", "patient_id": None, "path": "/x"}

    def test_log_request_masks_caller(self, caplog):
        with caplog.at_level(logging.INFO, logger="medtag.http"):
            log_request("POST", "/ai-diagnosis", 200, 12.3456, user_id=RESPONDER_ID)

        record = caplog.records[0]
        assert record.levelno == logging.INFO
        assert record.data["user_id"] == "11111111-xxxx"
        assert record.data["duration_ms"] == 12.35

    def test_log_request_server_error_level(self, caplog):
        with caplog.at_level(logging.INFO, logger="medtag.http"):
            log_request("GET", "/patients/x", 503, 1.0)
        assert caplog.records[0].levelno == logging.ERROR
