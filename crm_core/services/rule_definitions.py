"""
Typed views over the JSON condition and action columns of AutomationRule

Conditions are parsed into a small AST (payload key -> literal or
comparator). Actions are validated into a tagged union on ``type``.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

import pydantic
from pydantic import BaseModel, Field, TypeAdapter, model_validator

from crm_core.core.exceptions import ValidationError
from crm_core.models.contact import ContactStage

logger = logging.getLogger(__name__)

_MISSING = object()


class Operator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LiteralTerm:
    value: Any


@dataclass(frozen=True)
class ComparatorTerm:
    operator: Optional[str]
    value: Any


ConditionTerm = Union[LiteralTerm, ComparatorTerm]
Condition = Dict[str, ConditionTerm]


def parse_condition(raw: Any) -> Condition:
    """
    Parse a stored condition blob.

    ``None`` and ``{}`` both mean "always matches". Any object value is read
    as a comparator; its operator is checked at evaluation time so one bad
    key only fails that key.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("Condition must be a JSON object")

    condition: Condition = {}
    for key, expected in raw.items():
        if isinstance(expected, Mapping):
            condition[key] = ComparatorTerm(operator=expected.get("operator"), value=expected.get("value"))
        else:
            condition[key] = LiteralTerm(value=expected)
    return condition


def _strict_equals(actual: Any, expected: Any) -> bool:
    # True == 1 in Python; a JSON boolean never equals a JSON number
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _to_number(value: Any) -> Optional[float]:
    if value is None or value is _MISSING:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_term(key: str, term: ConditionTerm, payload: Mapping[str, Any]) -> bool:
    actual = payload.get(key, _MISSING)

    if isinstance(term, LiteralTerm):
        return actual is not _MISSING and _strict_equals(actual, term.value)

    try:
        operator = Operator(term.operator)
    except ValueError:
        logger.warning(f"Unknown condition operator {term.operator!r} for key {key!r}")
        return False

    if operator == Operator.EQUALS:
        return actual is not _MISSING and _strict_equals(actual, term.value)
    if operator == Operator.NOT_EQUALS:
        return actual is _MISSING or not _strict_equals(actual, term.value)
    if operator == Operator.CONTAINS:
        if actual is _MISSING or actual is None:
            return False
        return str(term.value) in str(actual)

    left = _to_number(actual)
    right = _to_number(term.value)
    if left is None or right is None:
        return False
    if operator == Operator.GREATER_THAN:
        return left > right
    return left < right


def evaluate_condition(condition: Condition, payload: Mapping[str, Any]) -> bool:
    """All keys must match (logical AND); an empty condition always matches"""
    return all(evaluate_term(key, term, payload) for key, term in condition.items())


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class ActionType(str, enum.Enum):
    SEND_MESSAGE = "send_message"
    SEND_TEMPLATE = "send_template"
    UPDATE_STAGE = "update_stage"
    ADD_TAG = "add_tag"


class SendMessageAction(BaseModel):
    type: Literal["send_message"]
    message: Optional[str] = None
    content: Optional[str] = None

    @model_validator(mode="after")
    def require_text(self):
        if not (self.message or self.content):
            raise ValueError("send_message needs 'message' or 'content'")
        return self

    @property
    def text(self) -> str:
        return self.message or self.content


class SendTemplateAction(BaseModel):
    type: Literal["send_template"]
    template_id: Union[int, str]


class UpdateStageAction(BaseModel):
    type: Literal["update_stage"]
    stage: ContactStage


class AddTagAction(BaseModel):
    type: Literal["add_tag"]
    tag: str = Field(min_length=1)


RuleAction = Annotated[
    Union[SendMessageAction, SendTemplateAction, UpdateStageAction, AddTagAction],
    Field(discriminator="type"),
]

_action_adapter = TypeAdapter(RuleAction)
_KNOWN_ACTION_TYPES = {action_type.value for action_type in ActionType}


def parse_action(raw: Any) -> Optional[RuleAction]:
    """
    Validate a stored action blob.

    Returns None for an unrecognised ``type`` (callers treat that as a no-op);
    raises ValidationError when the blob is not an action at all or a known
    type is missing its fields.
    """
    if not isinstance(raw, Mapping) or not isinstance(raw.get("type"), str) or not raw["type"]:
        raise ValidationError("Action must be a JSON object with a 'type'")
    if raw["type"] not in _KNOWN_ACTION_TYPES:
        return None
    try:
        return _action_adapter.validate_python(dict(raw))
    except pydantic.ValidationError as e:
        details = "; ".join(error["msg"] for error in e.errors())
        raise ValidationError(f"Invalid {raw['type']} action: {details}") from e


def validate_rule_definition(condition: Any, action: Any) -> Dict[str, Any]:
    """Check a condition/action pair before it is stored"""
    parse_condition(condition)
    parse_action(action)
    return {"condition": dict(condition or {}), "action": dict(action)}
