"""
SMS message templates.

Templates carry ``{placeholder}`` fields; the dispatcher fills in
``hospital``, ``bloodType``, ``quantity``, ``urgency``, ``donorName`` and
``responseUrl``.
"""

import re
from enum import Enum
from typing import Dict, Mapping

from lifeline.config import Settings, settings
from lifeline.schemas.base_schema import Urgency

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")


class PriorityTier(str, Enum):

    HIGH = "high"
    NORMAL = "normal"


URGENCY_LABELS = {
    Urgency.PREGNANCY: "PREGNANCY EMERGENCY - URGENT",
    Urgency.HIGH: "HIGH PRIORITY - EMERGENCY",
    Urgency.MEDIUM: "MEDIUM PRIORITY",
    Urgency.LOW: "LOW PRIORITY",
}


def priority_tier_for(urgency: Urgency) -> PriorityTier:
    if urgency in (Urgency.HIGH, Urgency.PREGNANCY):
        return PriorityTier.HIGH
    return PriorityTier.NORMAL


def urgency_label(urgency: Urgency) -> str:
    return URGENCY_LABELS.get(urgency, URGENCY_LABELS[Urgency.LOW])


def render_message(template: str, variables: Mapping[str, object]) -> str:
    """Fill every known placeholder; unknown ones are left as written."""

    def substitute(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(substitute, template)


def ensure_response_url(message: str, response_url: str) -> str:
    if response_url in message:
        return message
    return f"{message} Respond: {response_url}"


class MessageTemplates:
    """Template lookup by priority tier."""

    def __init__(self, templates: Dict[PriorityTier, str]):
        self._templates = dict(templates)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "MessageTemplates":
        return cls(
            {
                PriorityTier.HIGH: config.SMS_TEMPLATE_HIGH_PRIORITY,
                PriorityTier.NORMAL: config.SMS_TEMPLATE_NORMAL_PRIORITY,
            }
        )

    def template_for(self, tier: PriorityTier) -> str:
        return self._templates.get(tier, self._templates[PriorityTier.NORMAL])

    def build_message(self, urgency: Urgency, variables: Mapping[str, object]) -> str:
        template = self.template_for(priority_tier_for(urgency))
        message = render_message(template, variables)
        return ensure_response_url(message, str(variables["responseUrl"]))
