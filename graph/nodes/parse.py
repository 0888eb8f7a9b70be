import json

from pydantic import ValidationError
from loguru import logger

from graph.state import ActionState
from graph.models import ActionRequest
from tools.errors import RequestParseError


def parse_request(body: bytes) -> ActionRequest:
    """Decode and validate an action request body."""
    try:
        data = json.loads(body)
    except (ValueError, TypeError) as e:
        raise RequestParseError(f"Malformed JSON body: {e}") from e

    if not isinstance(data, dict):
        raise RequestParseError("Request body must be a JSON object")

    try:
        return ActionRequest.model_validate(data)
    except ValidationError as e:
        raise RequestParseError(f"Invalid action request: {e.error_count()} validation error(s): {e}") from e


def parse(state: ActionState) -> ActionState:
    """Turn the raw request body into an ActionRequest, or mark the run as failed."""
    try:
        request = parse_request(state.get("body", b""))
    except RequestParseError as e:
        logger.error(f"Processing Error: {e}")
        state.setdefault("errors", []).append(str(e))
        state["request"] = None
        state["decided_path"] = "failed"
        return state

    state["request"] = request
    state["decided_path"] = "evaluate"
    logger.info(f"Parsed action request for munchkin {request.munchkin_id}: {len(request.object_data)} records")
    return state
