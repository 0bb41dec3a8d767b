"""
JSON extraction and validation for diagnosis model output.

The model is asked for JSON mode, but that is only a hint. This module is
where the DiagnosisResult shape is actually enforced: output that does not
parse, or parses into the wrong shape, is rejected rather than repaired.
"""
import json
import re
import logging

from pydantic import ValidationError

from .errors import InvalidInputError, MalformedModelOutputError, UpstreamError
from .models import DiagnosisResult

logger = logging.getLogger(__name__)

CODE_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*([\s\S]*?)\s*```$', re.IGNORECASE)


def _unwrap_code_fence(text: str) -> str:
    """Strip a single markdown code fence wrapping the whole response."""
    match = CODE_FENCE_PATTERN.match(text.strip())
    return match.group(1) if match else text.strip()


def load_json_object(text: str) -> dict:
    """Parse model output as a JSON object.

    Raises:
        MalformedModelOutputError: text is not JSON, or not a JSON object
    """
    try:
        data = json.loads(_unwrap_code_fence(text))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse AI response ({e}): {text[:200]}...")
        raise MalformedModelOutputError()

    if not isinstance(data, dict):
        logger.error(f"AI response is JSON but not an object: {type(data).__name__}")
        raise MalformedModelOutputError()
    return data


def parse_diagnosis(text: str) -> DiagnosisResult:
    """Parse and structurally validate a diagnosis model response.

    Checks shape only: triageLevel is one of critical/urgent/stable,
    probableConditions and immediateActions are present, and confidence
    values are numbers in [0, 100]. Clinical plausibility is not checked.

    Raises:
        UpstreamError: the model returned no content
        MalformedModelOutputError: content is not a valid DiagnosisResult
    """
    if not text or not text.strip():
        logger.error("No content in AI response")
        raise UpstreamError("Invalid AI response")

    data = load_json_object(text)

    try:
        return DiagnosisResult.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
            for err in e.errors()[:5]
        )
        logger.error(f"AI response failed structural validation: {problems}")
        raise MalformedModelOutputError()


def load_request_body(body: bytes):
    """Decode a raw request body. An empty body decodes to None.

    Raises:
        InvalidInputError: body is not valid JSON
    """
    if not body:
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidInputError("Invalid JSON body")
