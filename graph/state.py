from typing import TypedDict, Optional, List, Dict, Any

from graph.models import ActionRequest, CallbackPayload


class ActionState(TypedDict, total=False):
    """State shape for the action processing workflow."""
    body: bytes                          # raw /submitAsyncAction body
    headers: Dict[str, str]              # inbound headers, lower-case keys
    request: Optional[ActionRequest]     # parsed request, None when unparsable
    payload: Optional[CallbackPayload]   # assembled callback body
    failed_records: int
    callback_status: Optional[int]       # HTTP status of the callback, None if it never completed
    errors: List[str]
    decided_path: str                    # "evaluate" | "failed" | "dispatched"
