"""
Staff actions module.

Orchestrates Moodle calls for the feedback export and submission browsing
workflows, and relays submission files for preview.
"""

from .feedback_export import (
    AssignmentFeedbackExporter,
    ExportStatistics,
    FeedbackExportResult,
    StudentFeedbackRow,
    export_assignment_feedback,
)
from .file_proxy import FileProxy, FileProxyError, ProxiedFile, proxy_file
from .student_submissions import (
    AssignmentDescriptor,
    AssignmentsResult,
    StudentFileDescriptor,
    StudentFilesCollector,
    StudentFilesResult,
    StudentsResult,
    StudentSubmissionAggregate,
    SubmissionState,
    get_student_files,
    list_course_assignments,
    list_course_students,
)

__all__ = [
    # Feedback export
    "AssignmentFeedbackExporter",
    "ExportStatistics",
    "FeedbackExportResult",
    "StudentFeedbackRow",
    "export_assignment_feedback",
    # Student submissions
    "AssignmentDescriptor",
    "AssignmentsResult",
    "StudentFileDescriptor",
    "StudentFilesCollector",
    "StudentFilesResult",
    "StudentsResult",
    "StudentSubmissionAggregate",
    "SubmissionState",
    "get_student_files",
    "list_course_assignments",
    "list_course_students",
    # File proxy
    "FileProxy",
    "FileProxyError",
    "ProxiedFile",
    "proxy_file",
]
