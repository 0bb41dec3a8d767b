"""
Companion chatbot endpoint logic.

Validates the caller's message history and forwards it, behind the same
authentication and per-user rate limiting as diagnosis, to a
chat-completions model.
"""
import logging
from typing import Any, Optional, Tuple

from .access_control import authenticate
from .errors import InvalidInputError, ServiceNotConfiguredError
from .inference_client import ChatClient
from .json_utils import load_request_body
from .models import ChatMessage
from .rate_limiter import RateLimitManager
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

ENDPOINT = "chatbot"
MAX_MESSAGES = 20
MAX_MESSAGE_LENGTH = 2000
VALID_ROLES = ("user", "assistant")


def validate_messages(payload: Any) -> list[ChatMessage]:
    messages = payload.get("messages") if isinstance(payload, dict) else None
    if not isinstance(messages, list):
        raise InvalidInputError("Messages array is required")

    if len(messages) > MAX_MESSAGES:
        raise InvalidInputError(f"Maximum {MAX_MESSAGES} messages allowed")

    validated = []
    for msg in messages:
        if not isinstance(msg, dict) or msg.get("role") not in VALID_ROLES:
            raise InvalidInputError("Invalid message role")
        content = msg.get("content")
        if not isinstance(content, str) or len(content) > MAX_MESSAGE_LENGTH:
            raise InvalidInputError(
                f"Message content must be a string under {MAX_MESSAGE_LENGTH} characters"
            )
        validated.append(ChatMessage(role=msg["role"], content=content))
    return validated


class ChatService:

    def __init__(self, store: SupabaseClient, rate_limits: RateLimitManager, client: ChatClient):
        self.store = store
        self.rate_limits = rate_limits
        self.client = client

    async def reply(
        self, auth_header: Optional[str], body: bytes, state: Optional[Any] = None
    ) -> Tuple[str, dict]:
        """Answer the latest message. Returns the reply and rate limit headers."""
        user_id = await authenticate(self.store, auth_header, state)
        headers = self.rate_limits.check_rate_limit(ENDPOINT, user_id)

        if not self.client.configured:
            logger.error("Chat model API key is not configured")
            raise ServiceNotConfiguredError("An error occurred processing your request")

        messages = validate_messages(load_request_body(body))
        logger.info(f"Chat request with {len(messages)} messages")

        reply = await self.client.reply([m.model_dump() for m in messages])
        return reply, headers
