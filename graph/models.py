from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tools.formula import EvaluationOutcome, FormulaFailure

DEFAULT_RETURN_FIELD = "formulaResult"
DEFAULT_FORMAT = "String"
CALC_ERROR = "CALC_ERROR"


class _Inbound(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class FlowStepContext(_Inbound):
    formula: str = ""
    format: str = DEFAULT_FORMAT
    return_field: str = Field(DEFAULT_RETURN_FIELD, alias="returnField")

    @field_validator("formula", mode="before")
    @classmethod
    def empty_formula(cls, v):
        return str(v) if v else ""

    @field_validator("format", mode="before")
    @classmethod
    def default_format(cls, v):
        return str(v) if v else DEFAULT_FORMAT

    @field_validator("return_field", mode="before")
    @classmethod
    def default_return_field(cls, v):
        return str(v) if v else DEFAULT_RETURN_FIELD


class ObjectContext(_Inbound):
    id: Any


class LeadRecord(_Inbound):
    object_context: ObjectContext = Field(alias="objectContext")
    flow_step_context: FlowStepContext = Field(default_factory=FlowStepContext, alias="flowStepContext")

    @field_validator("flow_step_context", mode="before")
    @classmethod
    def missing_flow_context(cls, v):
        # Absent or malformed step context falls back to the defaults.
        return v if isinstance(v, dict) else {}


class Subscription(_Inbound):
    munchkin_id: Any = Field(alias="munchkinId")


class RequestContext(_Inbound):
    subscription: Subscription


class ActionRequest(_Inbound):
    """Inbound batch posted to /submitAsyncAction."""

    token: Any = None
    callback_url: str = Field(alias="callbackUrl")
    context: RequestContext
    object_data: List[LeadRecord] = Field(alias="objectData")

    @property
    def munchkin_id(self) -> Any:
        return self.context.subscription.munchkin_id


@dataclass
class ResultRecord:
    """
    Outcome for one lead record.

    ``extra_field`` holds the optional custom ``returnField`` as an explicit
    (key, value) pair; it is only set for successful evaluations whose
    return field differs from ``formulaResult``.
    """

    id: Any
    computed_formula: str
    value: Any = None
    error_message: Optional[str] = None
    extra_field: Optional[Tuple[str, Any]] = None

    @property
    def failed(self) -> bool:
        return self.error_message is not None

    @classmethod
    def from_outcome(cls, lead: LeadRecord, outcome: EvaluationOutcome) -> "ResultRecord":
        step = lead.flow_step_context
        record = cls(id=lead.object_context.id, computed_formula=step.formula)

        if isinstance(outcome, FormulaFailure):
            record.error_message = f"Formula error: {outcome.message}"
            return record

        record.value = outcome.value
        if step.return_field != DEFAULT_RETURN_FIELD:
            record.extra_field = (step.return_field, outcome.value)
        return record

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "computedFormula": self.computed_formula}
        if self.failed:
            data["status"] = "failed"
            data["error"] = {"code": CALC_ERROR, "message": self.error_message}
            return data

        data[DEFAULT_RETURN_FIELD] = self.value
        if self.extra_field is not None:
            key, value = self.extra_field
            data[key] = value
        return data


@dataclass
class CallbackPayload:
    token: Any
    munchkin_id: Any
    object_data: List[ResultRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "munchkinId": self.munchkin_id,
            "objectData": [record.to_dict() for record in self.object_data],
        }
