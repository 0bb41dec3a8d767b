"""
Supabase Client - HTTP client for the hosted record store.

Talks to the GoTrue auth API and the PostgREST table API directly with
httpx. Every call forwards the caller's own Authorization header, so the
store's row-level policies decide what the caller may see.
"""
import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Optional

import httpx
from pydantic import ValidationError

from .errors import (
    AuthenticationError,
    RecordNotFoundError,
    RecordStoreError,
    RoleLookupError,
)
from .formatters import format_medication
from .models import PatientAttributes

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DAYS_PER_YEAR = 365.25


class SupabaseError(Exception):
    """A record store call failed at the transport or HTTP level."""


def age_from_birth_date(date_of_birth: Optional[str], today: Optional[date] = None) -> int:
    """Whole years since date_of_birth (ISO date). Missing or bad dates give 0."""
    if not date_of_birth:
        return 0
    try:
        born = date.fromisoformat(date_of_birth[:10])
    except ValueError:
        logger.warning(f"Unparseable date_of_birth: {date_of_birth!r}")
        return 0
    today = today or datetime.now(timezone.utc).date()
    return max(0, int((today - born).days // DAYS_PER_YEAR))


class SupabaseClient:
    """HTTP client for Supabase auth and PostgREST."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.anon_key)

    def _headers(self, auth_header: str) -> dict:
        return {
            "apikey": self.anon_key,
            "Authorization": auth_header,
        }

    async def _select(self, auth_header: str, table: str, params: dict) -> list[dict]:
        """GET rows from a PostgREST table."""
        try:
            response = await self.client.get(
                f"{self.base_url}/rest/v1/{table}",
                params=params,
                headers=self._headers(auth_header),
            )
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Supabase select on {table} failed: {e.response.status_code} - {e.response.text[:200]}")
            raise SupabaseError(f"select {table} failed: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Supabase connection error on {table}: {e}")
            raise SupabaseError(f"select {table} failed: {e}") from e
        except ValueError as e:
            raise SupabaseError(f"select {table} returned invalid JSON") from e

        if not isinstance(rows, list):
            raise SupabaseError(f"select {table} returned {type(rows).__name__}, expected list")
        return rows

    async def insert(self, auth_header: str, table: str, row: dict) -> None:
        """Insert a single row, discarding the representation."""
        headers = self._headers(auth_header)
        headers["Prefer"] = "return=minimal"
        try:
            response = await self.client.post(
                f"{self.base_url}/rest/v1/{table}",
                json=row,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SupabaseError(f"insert {table} failed: {e.response.status_code} - {e.response.text[:200]}") from e
        except httpx.RequestError as e:
            raise SupabaseError(f"insert {table} failed: {e}") from e

    async def get_user(self, auth_header: str) -> dict:
        """Resolve the caller's token to a user.

        Raises:
            AuthenticationError: token rejected or auth API unreachable
        """
        try:
            response = await self.client.get(
                f"{self.base_url}/auth/v1/user",
                headers=self._headers(auth_header),
            )
        except httpx.RequestError as e:
            logger.error(f"Auth error: {e}")
            raise AuthenticationError()

        if response.status_code != 200:
            logger.error(f"Auth error: {response.status_code}")
            raise AuthenticationError()

        try:
            user = response.json()
        except ValueError:
            raise AuthenticationError()
        if not isinstance(user, dict) or not user.get("id"):
            raise AuthenticationError()
        return user

    async def fetch_roles(self, auth_header: str, user_id: str) -> list[str]:
        """Read the caller's assigned roles.

        Raises:
            RoleLookupError: the store could not be read
        """
        try:
            rows = await self._select(
                auth_header,
                "user_roles",
                {"select": "role", "user_id": f"eq.{user_id}"},
            )
        except SupabaseError as e:
            logger.error(f"Role check error: {e}")
            raise RoleLookupError()
        return [row["role"] for row in rows if isinstance(row, dict) and row.get("role")]

    async def fetch_patient(self, auth_header: str, patient_id: str) -> PatientAttributes:
        """Load an active patient's profile and project it to PatientAttributes.

        Raises:
            RecordNotFoundError: no active patient with that id is visible
            RecordStoreError: any table could not be read
        """
        try:
            patients = await self._select(
                auth_header,
                "patients",
                {
                    "select": "id,blood_type,user_id",
                    "id": f"eq.{patient_id}",
                    "is_active": "eq.true",
                },
            )
            if not patients:
                raise RecordNotFoundError()
            patient = patients[0]

            profiles, allergies, medications, conditions = await asyncio.gather(
                self._select(auth_header, "profiles", {
                    "select": "full_name,date_of_birth",
                    "id": f"eq.{patient.get('user_id')}",
                }),
                self._select(auth_header, "allergies", {
                    "select": "allergen",
                    "patient_id": f"eq.{patient_id}",
                }),
                self._select(auth_header, "medications", {
                    "select": "medication_name,dosage,frequency",
                    "patient_id": f"eq.{patient_id}",
                    "is_active": "eq.true",
                }),
                self._select(auth_header, "medical_history", {
                    "select": "condition",
                    "patient_id": f"eq.{patient_id}",
                }),
            )
        except SupabaseError as e:
            logger.error(f"Failed to load patient {patient_id}: {e}")
            raise RecordStoreError()

        profile = profiles[0] if profiles else {}

        try:
            return self._project_patient(patient, profile, allergies, medications, conditions)
        except ValidationError as e:
            logger.error(f"Stored record for patient {patient_id} does not fit PatientAttributes: {e.error_count()} errors")
            raise RecordStoreError()

    @staticmethod
    def _project_patient(
        patient: dict,
        profile: dict,
        allergies: list[dict],
        medications: list[dict],
        conditions: list[dict],
    ) -> PatientAttributes:
        return PatientAttributes(
            name=(profile.get("full_name") or "").strip() or "Unknown",
            age=age_from_birth_date(profile.get("date_of_birth")),
            blood_type=patient.get("blood_type"),
            allergies=[row["allergen"] for row in allergies if row.get("allergen")],
            medications=[
                format_medication(
                    row.get("medication_name", ""),
                    row.get("dosage", ""),
                    row.get("frequency", ""),
                )
                for row in medications
                if row.get("medication_name")
            ],
            conditions=[row["condition"] for row in conditions if row.get("condition")],
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
