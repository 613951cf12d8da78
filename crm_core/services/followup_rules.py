"""
Follow-up rule table: which nudge to send for each pipeline stage
"""
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, TypeAdapter

from crm_core.models.contact import ContactStage, TERMINAL_STAGES

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "{name}"
DEFAULT_NAME = "there"


class FollowUpRule(BaseModel):
    stage: ContactStage
    hours_after_last_message: int = Field(gt=0)
    message_template: str = Field(min_length=1)
    max_followups: int = Field(gt=0)

    @property
    def delay_minutes(self) -> int:
        return self.hours_after_last_message * 60


DEFAULT_FOLLOWUP_RULES: List[FollowUpRule] = [
    FollowUpRule(
        stage=ContactStage.NEW,
        hours_after_last_message=24,
        message_template="Hi {name}! Just following up on our conversation. Is there anything I can help you with?",
        max_followups=3,
    ),
    FollowUpRule(
        stage=ContactStage.CONTACTED,
        hours_after_last_message=48,
        message_template="Hello {name}! I wanted to check if you had a chance to think about our offer?",
        max_followups=2,
    ),
    FollowUpRule(
        stage=ContactStage.QUALIFIED,
        hours_after_last_message=24,
        message_template="Hi {name}! Just checking in. Do you have any questions about moving forward?",
        max_followups=3,
    ),
    FollowUpRule(
        stage=ContactStage.PROPOSAL,
        hours_after_last_message=12,
        message_template="Hi {name}! Have you had a chance to review the proposal I sent?",
        max_followups=4,
    ),
    FollowUpRule(
        stage=ContactStage.NEGOTIATION,
        hours_after_last_message=6,
        message_template="Hello {name}! Let's finalize the details. When would be a good time to discuss?",
        max_followups=5,
    ),
]


class FollowUpRuleTable:
    """Stage -> follow-up rule lookup. Terminal stages never get an entry."""

    def __init__(self, rules: Optional[Iterable[FollowUpRule]] = None):
        self._rules: Dict[ContactStage, FollowUpRule] = {}
        for rule in (DEFAULT_FOLLOWUP_RULES if rules is None else rules):
            if rule.stage in TERMINAL_STAGES:
                logger.warning(f"Ignoring follow-up rule for terminal stage {rule.stage.value}")
                continue
            self._rules[rule.stage] = rule

    @classmethod
    def from_file(cls, path: str) -> "FollowUpRuleTable":
        """Load rules from a JSON list of rule objects"""
        raw = Path(path).read_text(encoding="utf-8")
        rules = TypeAdapter(List[FollowUpRule]).validate_json(raw)
        logger.info(f"Loaded {len(rules)} follow-up rule(s) from {path}")
        return cls(rules)

    def for_stage(self, stage) -> Optional[FollowUpRule]:
        try:
            return self._rules.get(ContactStage(stage))
        except ValueError:
            return None

    @property
    def rules(self) -> List[FollowUpRule]:
        return list(self._rules.values())

    @staticmethod
    def render(rule: FollowUpRule, name: Optional[str]) -> str:
        return rule.message_template.replace(NAME_PLACEHOLDER, name or DEFAULT_NAME)
