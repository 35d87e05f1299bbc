"""
Moodle integration module.

Handles communication with Moodle LMS via its web services API. Every call
returns a CallSuccess or CallFailure value.
"""

from .api import (
    CallFailure,
    CallResult,
    CallSuccess,
    ErrorKind,
    MoodleAPIError,
    MoodleAuthError,
    MoodleConfigurationError,
    MoodleError,
    MoodleGateway,
    MoodleNotFoundError,
    MoodleTimeoutError,
    MoodleTransportError,
    MoodleValidationError,
    create_gateway,
)
from .models import (
    CourseModule,
    Feedback,
    Plugin,
    Student,
    Submission,
    SubmissionAttempt,
    SubmissionFile,
    SubmissionStatus,
)

__all__ = [
    # Gateway
    "MoodleGateway",
    "create_gateway",
    # Results
    "CallResult",
    "CallSuccess",
    "CallFailure",
    "MoodleError",
    "ErrorKind",
    # Exceptions
    "MoodleAPIError",
    "MoodleAuthError",
    "MoodleConfigurationError",
    "MoodleNotFoundError",
    "MoodleTimeoutError",
    "MoodleTransportError",
    "MoodleValidationError",
    # Models
    "CourseModule",
    "Feedback",
    "Plugin",
    "Student",
    "Submission",
    "SubmissionAttempt",
    "SubmissionFile",
    "SubmissionStatus",
]
