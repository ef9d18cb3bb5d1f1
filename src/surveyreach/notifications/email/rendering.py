"""
Invitation and reminder email rendering.

Templates use {{variable}} placeholders. Values are HTML-escaped in the
HTML body only.
"""

import html
import re
from dataclasses import dataclass
from typing import Any

from surveyreach.notifications.email.interface import EmailMessage
from surveyreach.reminders.planner import ReminderType


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body_html: str
    body_text: str


@dataclass(frozen=True)
class RenderedTemplate:
    """Result of template rendering."""

    subject: str
    body_html: str
    body_text: str | None


INVITATION_TEMPLATE = EmailTemplate(
    subject="You're invited: {{survey_topic}}",
    body_html=(
        "<p>Hello,</p>"
        "<p>We would value your feedback on <strong>{{survey_topic}}</strong>.</p>"
        '<p><a href="{{survey_link}}">Take the survey</a></p>'
        "<p>Thank you for your time!</p>"
    ),
    body_text=(
        "Hello,\n\n"
        "We would value your feedback on \"{{survey_topic}}\".\n\n"
        "Take the survey: {{survey_link}}\n\n"
        "Thank you for your time!"
    ),
)

REMINDER_TEMPLATE = EmailTemplate(
    subject="Reminder: {{survey_topic}}",
    body_html=(
        "<p>Friendly reminder!</p>"
        "<p>Please take a moment to complete our survey "
        "<strong>{{survey_topic}}</strong>. Your feedback matters.</p>"
        '<p><a href="{{survey_link}}">Take the survey</a></p>'
    ),
    body_text=(
        "Friendly reminder!\n\n"
        "Please take a moment to complete our survey \"{{survey_topic}}\". "
        "Your feedback matters.\n\n"
        "Take the survey: {{survey_link}}"
    ),
)

CLOSING_TEMPLATE = EmailTemplate(
    subject="Final reminder: {{survey_topic}} closes soon",
    body_html=(
        "<p>Final reminder!</p>"
        "<p>The survey <strong>{{survey_topic}}</strong> closes {{closes}}. "
        "Your input is valuable, please take a moment to participate.</p>"
        '<p><a href="{{survey_link}}">Take the survey</a></p>'
    ),
    body_text=(
        "Final reminder!\n\n"
        "The survey \"{{survey_topic}}\" closes {{closes}}. "
        "Your input is valuable, please take a moment to participate.\n\n"
        "Take the survey: {{survey_link}}"
    ),
)


class TemplateRenderer:
    """Renders email templates with {{variable}} substitution."""

    VARIABLE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")

    def __init__(self, escape_html: bool = True) -> None:
        self._escape_html = escape_html

    def render(self, template: EmailTemplate, variables: dict[str, Any]) -> RenderedTemplate:
        str_vars = {k: str(v) if v is not None else "" for k, v in variables.items()}
        return RenderedTemplate(
            subject=self._substitute(template.subject, str_vars, escape=False),
            body_html=self._substitute(template.body_html, str_vars, escape=self._escape_html),
            body_text=self._substitute(template.body_text, str_vars, escape=False),
        )

    def _substitute(self, template: str, variables: dict[str, str], escape: bool) -> str:
        def replacer(match: re.Match[str]) -> str:
            value = variables.get(match.group(1), "")
            return html.escape(value) if escape else value

        return self.VARIABLE_PATTERN.sub(replacer, template)


def template_for(reminder_type: ReminderType) -> EmailTemplate:
    if reminder_type == ReminderType.INVITATION:
        return INVITATION_TEMPLATE
    if reminder_type == ReminderType.CLOSING:
        return CLOSING_TEMPLATE
    return REMINDER_TEMPLATE


def build_survey_email(
    reminder_type: ReminderType,
    *,
    to_email: str,
    survey_topic: str,
    survey_link: str,
    closes: str = "today",
    renderer: TemplateRenderer | None = None,
) -> EmailMessage:
    """Build the invitation or reminder message for one participant."""
    rendered = (renderer or TemplateRenderer()).render(
        template_for(reminder_type),
        {"survey_topic": survey_topic, "survey_link": survey_link, "closes": closes},
    )
    return EmailMessage(
        to_email=to_email,
        subject=rendered.subject,
        body_html=rendered.body_html,
        body_text=rendered.body_text,
        headers={"X-Survey-Email-Type": reminder_type.value},
    )
