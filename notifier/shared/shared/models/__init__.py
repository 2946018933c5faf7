"""SQLAlchemy models."""

from shared.models.base import Base
from shared.models.email_template import EmailTemplate
from shared.models.error_log import ErrorLog
from shared.models.idempotency_key import NotificationIdempotencyKey
from shared.models.learning import Certificate, Course, CourseProgress, Enrollment
from shared.models.notification import Notification
from shared.models.notification_log import NotificationLog
from shared.models.notification_preference import NotificationPreference
from shared.models.notification_retry import NotificationRetry
from shared.models.notification_schedule import NotificationSchedule
from shared.models.user import User

__all__ = [
    "Base",
    "Certificate",
    "Course",
    "CourseProgress",
    "EmailTemplate",
    "Enrollment",
    "ErrorLog",
    "Notification",
    "NotificationIdempotencyKey",
    "NotificationLog",
    "NotificationPreference",
    "NotificationRetry",
    "NotificationSchedule",
    "User",
]
