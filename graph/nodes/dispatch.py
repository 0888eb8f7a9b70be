from graph.state import ActionState
from tools.callback import CallbackDispatcher
from loguru import logger


def make_dispatch(dispatcher: CallbackDispatcher):
    """Build the dispatch node bound to a callback dispatcher."""

    def dispatch(state: ActionState) -> ActionState:
        """Send the assembled payload to the request's callback URL."""
        request = state["request"]
        payload = state["payload"].to_dict()

        status = dispatcher.send(request.callback_url, state.get("headers", {}), payload)
        state["callback_status"] = status
        state["decided_path"] = "dispatched"

        if status is None:
            state.setdefault("errors", []).append("callback_failed")
            logger.warning(f"Callback for munchkin {request.munchkin_id} was dropped")
        return state

    return dispatch
