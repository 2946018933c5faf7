"""Template rendering and the recipient variable map."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from shared.schemas.notifications import MessageTemplate, UserProfile

# {{name}} with optional inner whitespace. Names never contain braces.
_PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")

_DEFAULT_TITLES = {
    "course_progress": "Course Progress Update",
    "course_completion": "Course Completed",
    "certificate_expiration": "Certificate Expiring Soon",
    "new_course_available": "New Course Available",
    "inactivity_reminder": "Continue Your Learning",
    "enrollment_confirmation": "Enrollment Confirmed",
    "quiz_completion": "Quiz Completed",
    "achievement_unlocked": "Achievement Unlocked",
    "welcome_message": "Welcome to Closer College",
    "team_enrollment": "Team Enrollment",
    "team_progress": "Team Progress Update",
    "team_completion": "Team Course Completed",
}

_DEFAULT_MESSAGES = {
    "course_progress": "Hi {firstName}, you're making great progress in your course!",
    "course_completion": "Congratulations {firstName}! You've completed your course.",
    "certificate_expiration": "Hi {firstName}, your certificate is expiring soon.",
    "new_course_available": (
        "Hi {firstName}, we've just published a new course you might be interested in."
    ),
    "inactivity_reminder": (
        "Hi {firstName}, we noticed you haven't accessed your course recently."
    ),
    "enrollment_confirmation": "Hi {firstName}, your enrollment has been confirmed.",
    "quiz_completion": "Great job {firstName}! You've completed a quiz.",
    "achievement_unlocked": "Congratulations {firstName}! You've unlocked a new achievement.",
    "welcome_message": (
        "Welcome to Closer College, {firstName}! We're excited to have you on board."
    ),
    "team_enrollment": "Hi {firstName}, your team has been enrolled in a new course.",
    "team_progress": "Hi {firstName}, here is the latest progress update for your team.",
    "team_completion": "Congratulations {firstName}! Your team has completed a course.",
}

# Stand-in values for template previews
SAMPLE_VARIABLES = {
    "firstName": "Student First Name",
    "lastName": "Student Last Name",
    "email": "student@example.com",
    "courseName": "Course Name",
    "courseId": "course-123",
    "progress": "50",
    "completionDate": "2026-01-15",
    "certificateId": "certificate-123",
    "expirationDate": "2026-12-31",
    "daysUntilExpiration": "30",
    "courseDescription": "Course description",
    "daysInactive": "14",
    "lastAccessDate": "2026-01-01",
    "link": "https://example.com",
}


@dataclass
class RenderedTemplate:
    subject: str
    html_body: str
    text_body: str
    preview_text: str | None = None


def render_text(text: str, variables: dict[str, str]) -> str:
    """Replace every ``{{name}}`` with its value in one pass.

    Unknown placeholders are left as-is, and substituted values are never
    re-scanned.
    """

    def _replace(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            return variables[name]
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, text)


def render_template(template: MessageTemplate, variables: dict[str, str]) -> RenderedTemplate:
    return RenderedTemplate(
        subject=render_text(template.subject, variables),
        html_body=render_text(template.html_content, variables),
        text_body=render_text(template.text_content, variables),
        preview_text=(
            render_text(template.preview_text, variables) if template.preview_text else None
        ),
    )


def build_variables(user: UserProfile, data: dict[str, str]) -> dict[str, str]:
    """Recipient fields first, then the payload (payload wins on collision)."""
    first_name = user.first_name
    if not first_name and user.display_name:
        first_name = user.display_name.split()[0] if user.display_name.split() else None

    variables = {
        "firstName": first_name or "Student",
        "lastName": user.last_name or "",
        "email": user.email or "",
    }
    variables.update(data)
    return variables


def coerce_variables(raw: dict[str, Any] | None) -> dict[str, str]:
    """Convert loosely typed input into a string-only payload."""
    if not raw:
        return {}
    coerced: dict[str, str] = {}
    for key, value in raw.items():
        if value is None:
            coerced[key] = ""
        elif isinstance(value, (dict, list)):
            coerced[key] = json.dumps(value, default=str)
        elif isinstance(value, bool):
            coerced[key] = "true" if value else "false"
        else:
            coerced[key] = str(value)
    return coerced


def default_title(notification_type: str) -> str:
    return _DEFAULT_TITLES.get(notification_type, "Notification")


def default_message(notification_type: str, variables: dict[str, str]) -> str:
    first_name = variables.get("firstName") or "Student"
    text = _DEFAULT_MESSAGES.get(notification_type, "Hi {firstName}, you have a new notification.")
    return text.replace("{firstName}", first_name)
