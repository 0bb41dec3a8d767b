"""
Authentication and role gate for the AI endpoints.
"""
import logging
from typing import Any, Iterable, Optional

from .errors import AuthenticationError
from .models import PRIVILEGED_ROLES
from .structured_logging import mask_user_id
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)


def has_privileged_role(roles: Iterable[str]) -> bool:
    """True iff any role may request AI diagnosis and view all patients."""
    return any(role in PRIVILEGED_ROLES for role in roles)


async def authenticate(
    store: SupabaseClient, auth_header: Optional[str], state: Optional[Any] = None
) -> str:
    """Return the caller's user id.

    When a request state is given, the id is also stored on it as user_id
    for the access log.

    Raises:
        AuthenticationError: header missing, or token not accepted by the store
    """
    if not auth_header:
        logger.error("No authorization header provided")
        raise AuthenticationError("Authorization required")

    user = await store.get_user(auth_header)
    if state is not None:
        state.user_id = user["id"]
    return user["id"]


class RoleGate:
    """Checks the caller holds a privileged role.

    Roles are read from the store on every call. A failed read raises
    RoleLookupError instead of returning an answer.
    """

    def __init__(self, store: SupabaseClient):
        self.store = store

    async def authorize(self, user_id: str, auth_header: str) -> bool:
        roles = await self.store.fetch_roles(auth_header, user_id)
        allowed = has_privileged_role(roles)
        if not allowed:
            logger.warning(f"User {mask_user_id(user_id)} lacks required role for AI diagnosis")
        return allowed
