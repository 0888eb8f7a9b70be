from graph.state import ActionState
from graph.models import CallbackPayload, ResultRecord
from tools.formula import evaluate_formula
from loguru import logger


def evaluate(state: ActionState) -> ActionState:
    """Evaluate every lead's formula in order and assemble the callback payload."""
    request = state["request"]
    records = []

    for lead in request.object_data:
        step = lead.flow_step_context
        outcome = evaluate_formula(step.formula, step.format)
        record = ResultRecord.from_outcome(lead, outcome)
        if record.failed:
            logger.warning(f"Formula failed for record {record.id}: {record.error_message}")
        records.append(record)

    state["payload"] = CallbackPayload(
        token=request.token,
        munchkin_id=request.munchkin_id,
        object_data=records,
    )
    state["failed_records"] = sum(1 for r in records if r.failed)

    logger.info(f"Evaluated {len(records)} records ({state['failed_records']} failed)")
    return state
