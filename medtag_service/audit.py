"""
Audit trail for patient lookups and AI diagnosis requests.

Writes go to the store's access_logs table. A failed write is logged and
swallowed; it never changes the response already computed for the caller.
"""
from typing import Optional

from .structured_logging import StructuredLogger
from .supabase_client import SupabaseClient, SupabaseError

logger = StructuredLogger(__name__)

ACTION_AI_DIAGNOSIS = "ai_diagnosis"
ACTION_VIEW_PATIENT = "view_patient"


class AuditLogger:

    def __init__(self, store: SupabaseClient):
        self.store = store

    async def record(
        self,
        auth_header: str,
        user_id: str,
        action: str,
        resource: str,
        metadata: Optional[dict] = None,
        patient_id: Optional[str] = None,
    ) -> bool:
        """Insert one access_logs row. Returns False if the write failed."""
        row = {
            "user_id": user_id,
            "action": action,
            "resource": resource,
            "metadata": metadata or {},
        }
        if patient_id:
            row["patient_id"] = patient_id

        try:
            await self.store.insert(auth_header, "access_logs", row)
        except SupabaseError as e:
            logger.warning("Failed to log access", action=action, user_id=user_id, error=str(e))
            return False
        return True

    async def record_diagnosis(
        self, auth_header: str, user_id: str, patient_name: str, triage_level: str
    ) -> bool:
        return await self.record(
            auth_header,
            user_id,
            action=ACTION_AI_DIAGNOSIS,
            resource="ai-diagnosis",
            metadata={"patient_name": patient_name, "triage_level": triage_level},
        )
