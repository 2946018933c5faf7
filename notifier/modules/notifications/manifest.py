"""Notifications module manifest: tool definitions."""

from shared.schemas.notifications import NOTIFICATION_TYPES
from shared.schemas.tools import ModuleManifest, ToolDefinition, ToolParameter

_TYPES = list(NOTIFICATION_TYPES)

_TEMPLATE_TYPE = ToolParameter(
    name="template_type",
    type="string",
    description="Notification type the schedule produces.",
    enum=_TYPES,
)

_CONDITIONS = ToolParameter(
    name="conditions",
    type="object",
    description=(
        "Thresholds for the recipient query. course_progress: {\"courseProgress\": 50}; "
        "course_completion: {\"completionLookbackDays\": 30}; certificate_expiration: "
        "{\"daysBeforeExpiration\": 30}; new_course_available: {\"publishedWithinDays\": 7}; "
        "inactivity_reminder: {\"daysSinceLastActivity\": 14}."
    ),
    required=False,
)

_NAME = ToolParameter(
    name="name",
    type="string",
    description="Human-readable label for the schedule.",
    required=False,
)

_SCHEDULE_ID = ToolParameter(
    name="schedule_id",
    type="string",
    description="UUID of the schedule.",
)

_USER_ID = ToolParameter(
    name="user_id",
    type="string",
    description="ID of the learner.",
)

_TEMPLATE_ID = ToolParameter(
    name="template_id",
    type="string",
    description="UUID of the email template.",
)

_PREVIEW_TEXT = ToolParameter(
    name="preview_text",
    type="string",
    description="Inbox preview line.",
    required=False,
)

MANIFEST = ModuleManifest(
    module_name="notifications",
    description=(
        "Scheduled learner notifications: course progress, completions, expiring "
        "certificates, new courses and inactivity reminders, delivered in-app, by "
        "email, push and SMS according to each learner's preferences and quiet hours. "
        "Also manages the email templates."
    ),
    tools=[
        ToolDefinition(
            name="notifications.create_schedule",
            description=(
                "Create a notification schedule. Frequencies: immediately (runs once), "
                "daily, weekly, monthly, recurring (needs recurring_schedule) and "
                "custom (needs custom_schedule)."
            ),
            parameters=[
                _TEMPLATE_TYPE,
                ToolParameter(
                    name="frequency",
                    type="string",
                    description="How often the schedule runs.",
                    enum=["immediately", "daily", "weekly", "monthly", "recurring", "custom"],
                ),
                _CONDITIONS,
                _NAME,
                ToolParameter(
                    name="is_active",
                    type="boolean",
                    description="Whether the schedule starts active. Default true.",
                    required=False,
                ),
                ToolParameter(
                    name="recurring_schedule",
                    type="object",
                    description=(
                        "{\"interval\": 2, \"unit\": \"days\", \"max_occurrences\": 10, "
                        "\"end_date\": \"2026-12-31T00:00:00Z\"}. unit: minutes, hours, "
                        "days, weeks or months."
                    ),
                    required=False,
                ),
                ToolParameter(
                    name="custom_schedule",
                    type="object",
                    description=(
                        "{\"days\": [1, 3], \"hours\": [9], \"minutes\": [0], "
                        "\"month_days\": [], \"months\": []}. days: 0 = Sunday. "
                        "Empty lists match any value."
                    ),
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.create_recurring_schedule",
            description="Create a schedule that repeats every N minutes/hours/days/weeks/months.",
            parameters=[
                _TEMPLATE_TYPE,
                ToolParameter(name="interval", type="integer", description="Repeat interval (>= 1)."),
                ToolParameter(
                    name="unit",
                    type="string",
                    description="Interval unit.",
                    enum=["minutes", "hours", "days", "weeks", "months"],
                ),
                ToolParameter(
                    name="max_occurrences",
                    type="integer",
                    description="Stop after this many runs.",
                    required=False,
                ),
                ToolParameter(
                    name="end_date",
                    type="string",
                    description="ISO 8601 datetime after which the schedule stops.",
                    required=False,
                ),
                _CONDITIONS,
                _NAME,
            ],
        ),
        ToolDefinition(
            name="notifications.create_custom_schedule",
            description=(
                "Create a schedule that fires on calendar minutes matching every non-empty "
                "list. Impossible combinations (e.g. day 31 in February) are rejected."
            ),
            parameters=[
                _TEMPLATE_TYPE,
                ToolParameter(name="days", type="array", description="Weekdays 0-6, 0 = Sunday.", required=False),
                ToolParameter(name="hours", type="array", description="Hours 0-23.", required=False),
                ToolParameter(name="minutes", type="array", description="Minutes 0-59.", required=False),
                ToolParameter(name="month_days", type="array", description="Days of month 1-31.", required=False),
                ToolParameter(name="months", type="array", description="Months 1-12.", required=False),
                _CONDITIONS,
                _NAME,
            ],
        ),
        ToolDefinition(
            name="notifications.list_schedules",
            description="List notification schedules with their execution stats.",
            parameters=[
                ToolParameter(
                    name="template_type",
                    type="string",
                    description="Only schedules of this type.",
                    required=False,
                    enum=_TYPES,
                ),
                ToolParameter(
                    name="active_only",
                    type="boolean",
                    description="Only active schedules.",
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.get_schedule",
            description="Get one schedule.",
            parameters=[_SCHEDULE_ID],
        ),
        ToolDefinition(
            name="notifications.update_schedule",
            description=(
                "Update a schedule. Changing frequency or timing recomputes the next run."
            ),
            parameters=[
                _SCHEDULE_ID,
                _NAME,
                _CONDITIONS,
                ToolParameter(
                    name="frequency",
                    type="string",
                    description="New frequency.",
                    required=False,
                    enum=["immediately", "daily", "weekly", "monthly", "recurring", "custom"],
                ),
                ToolParameter(
                    name="recurring_schedule",
                    type="object",
                    description="New recurring block.",
                    required=False,
                ),
                ToolParameter(
                    name="custom_schedule",
                    type="object",
                    description="New custom block.",
                    required=False,
                ),
                ToolParameter(
                    name="is_active",
                    type="boolean",
                    description="Activate or pause.",
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.set_schedule_active",
            description="Pause or resume a schedule.",
            parameters=[
                _SCHEDULE_ID,
                ToolParameter(name="is_active", type="boolean", description="True to resume."),
            ],
        ),
        ToolDefinition(
            name="notifications.delete_schedule",
            description="Delete a schedule.",
            parameters=[_SCHEDULE_ID],
        ),
        ToolDefinition(
            name="notifications.get_preferences",
            description="Get a learner's notification preferences (defaults if never saved).",
            parameters=[_USER_ID],
            required_permission="user",
        ),
        ToolDefinition(
            name="notifications.update_preferences",
            description=(
                "Update a learner's channels, per-type opt-outs and do-not-disturb window. "
                "Only the given fields change; types are merged per key."
            ),
            parameters=[
                _USER_ID,
                ToolParameter(name="email", type="boolean", description="Email channel.", required=False),
                ToolParameter(name="in_app", type="boolean", description="In-app channel.", required=False),
                ToolParameter(name="push", type="boolean", description="Push channel.", required=False),
                ToolParameter(name="sms", type="boolean", description="SMS channel.", required=False),
                ToolParameter(
                    name="types",
                    type="object",
                    description="{\"course_progress\": false} opts out of a type.",
                    required=False,
                ),
                ToolParameter(
                    name="do_not_disturb",
                    type="object",
                    description=(
                        "{\"enabled\": true, \"days\": [0, 6], \"start_time\": \"22:00\", "
                        "\"end_time\": \"06:00\", \"timezone\": \"Europe/Amsterdam\"}."
                    ),
                    required=False,
                ),
            ],
            required_permission="user",
        ),
        ToolDefinition(
            name="notifications.list_templates",
            description="List email templates, newest version first within each type.",
            parameters=[
                ToolParameter(
                    name="template_type",
                    type="string",
                    description="Only templates for this notification type.",
                    required=False,
                    enum=_TYPES,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.create_template",
            description=(
                "Create an email template. Subject and bodies may use {{variable}} "
                "placeholders such as {{firstName}} or {{courseName}}."
            ),
            parameters=[
                ToolParameter(
                    name="template_type",
                    type="string",
                    description="Notification type the template renders.",
                    enum=_TYPES,
                ),
                ToolParameter(name="name", type="string", description="Template label."),
                ToolParameter(name="subject", type="string", description="Email subject."),
                ToolParameter(name="html_content", type="string", description="HTML body."),
                ToolParameter(name="text_content", type="string", description="Plain-text body."),
                _PREVIEW_TEXT,
                ToolParameter(
                    name="is_active",
                    type="boolean",
                    description="Whether the template is used for sending. Default true.",
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.update_template",
            description="Change an email template. Only the given fields change; the version is bumped.",
            parameters=[
                _TEMPLATE_ID,
                ToolParameter(name="name", type="string", description="New label.", required=False),
                ToolParameter(name="subject", type="string", description="New subject.", required=False),
                ToolParameter(
                    name="html_content", type="string", description="New HTML body.", required=False
                ),
                ToolParameter(
                    name="text_content",
                    type="string",
                    description="New plain-text body.",
                    required=False,
                ),
                _PREVIEW_TEXT,
                ToolParameter(
                    name="is_active", type="boolean", description="Activate or retire.", required=False
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.delete_template",
            description="Delete an email template.",
            parameters=[_TEMPLATE_ID],
        ),
        ToolDefinition(
            name="notifications.preview_template",
            description="Render an email template with sample values.",
            parameters=[
                _TEMPLATE_ID,
                ToolParameter(
                    name="variables",
                    type="object",
                    description="Values that override the samples, e.g. {\"firstName\": \"Ada\"}.",
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.send_notification",
            description="Send one notification to a learner now, outside any schedule.",
            parameters=[
                _USER_ID,
                ToolParameter(
                    name="notification_type",
                    type="string",
                    description="Notification type.",
                    enum=_TYPES,
                ),
                ToolParameter(
                    name="data",
                    type="object",
                    description=(
                        "Template variables, e.g. {\"courseName\": \"Intro\", \"title\": \"...\", "
                        "\"message\": \"...\", \"link\": \"/courses/1\", \"priority\": \"high\"}."
                    ),
                    required=False,
                ),
                ToolParameter(
                    name="bypass_preferences",
                    type="boolean",
                    description="Ignore per-type opt-outs.",
                    required=False,
                ),
                ToolParameter(
                    name="bypass_do_not_disturb",
                    type="boolean",
                    description="Deliver even inside quiet hours.",
                    required=False,
                ),
                ToolParameter(
                    name="retry_on_failure",
                    type="boolean",
                    description="Queue a retry when delivery fails. Default true.",
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.get_stats",
            description="Delivery totals per type and channel, plus schedule run counters.",
            parameters=[
                ToolParameter(
                    name="since",
                    type="string",
                    description="ISO 8601 datetime; only count deliveries after it.",
                    required=False,
                ),
            ],
        ),
        ToolDefinition(
            name="notifications.run_sweep",
            description="Drain due retries and run due schedules now.",
            parameters=[],
        ),
    ],
)
