"""
Assignment feedback export.

Collects the grade and feedback comment of every student who submitted to
an assignment. The sequential steps (module resolution, submission listing)
abort the export on failure; per-student lookups degrade to empty rows.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..config.models import DEFAULT_CONCURRENCY_LIMIT, DEFAULT_USER_BATCH_SIZE
from ..moodle.api import CallFailure, MoodleGateway
from ..moodle.models import Plugin, Student
from ..utils.concurrency import run_bounded
from ..utils.logging import get_logger
from ..utils.text import html_to_text
from .validation import is_positive_int

logger = get_logger(__name__)

ASSIGNMENT_MODNAME = "assign"
COMMENTS_PLUGIN = "comments"
COMMENTS_FIELD = "comments"


@dataclass
class StudentFeedbackRow:
    """One exported row; empty strings mean "no value"."""

    user_id: int
    last_name: str = ""
    first_name: str = ""
    grade: str = ""
    feedback: str = ""


@dataclass
class ExportStatistics:
    """Counters describing one export run."""

    total_students: int = 0
    graded_count: int = 0
    ungraded_count: int = 0
    error_count: int = 0
    duration_ms: int = 0


@dataclass
class FeedbackExportResult:
    """Outcome of an export: rows and stats on success, a message otherwise."""

    success: bool
    rows: list[StudentFeedbackRow] = field(default_factory=list)
    error: str | None = None
    stats: ExportStatistics | None = None

    @classmethod
    def failure(cls, message: str) -> "FeedbackExportResult":
        return cls(success=False, error=message)


@dataclass
class _StudentOutcome:
    row: StudentFeedbackRow
    graded: bool = False
    failed: bool = False


def extract_feedback_comment(
    plugins: list[Plugin],
    text_extractor: Callable[[str], str] = html_to_text,
) -> str:
    """
    Extract the plain-text feedback comment from feedback plugins.

    Args:
        plugins: Feedback plugins of a submission status
        text_extractor: Converter applied to the rich-text comment

    Returns:
        Comment text, or "" when there is none
    """
    for plugin in plugins:
        if plugin.type != COMMENTS_PLUGIN:
            continue
        for editor_field in plugin.editor_fields:
            if editor_field.name == COMMENTS_FIELD and editor_field.text:
                return text_extractor(editor_field.text)
        return ""
    return ""


async def fetch_users_in_batches(
    gateway: MoodleGateway,
    user_ids: list[int],
    batch_size: int = DEFAULT_USER_BATCH_SIZE,
) -> dict[int, Student]:
    """
    Fetch user records batch by batch, one batch at a time.

    Failed batches are skipped; their users simply stay absent from the
    returned lookup.

    Returns:
        Mapping of user id to Student
    """
    users: dict[int, Student] = {}

    for start in range(0, len(user_ids), batch_size):
        batch = user_ids[start:start + batch_size]
        result = await gateway.get_users_by_ids(batch)

        if isinstance(result, CallFailure):
            logger.warning(
                f"Could not fetch {len(batch)} user profiles: {result.error.message}"
            )
            continue

        for user in result.data:
            users[user.id] = user

    return users


class AssignmentFeedbackExporter:
    """Orchestrates the Moodle calls behind one feedback export."""

    def __init__(
        self,
        gateway: MoodleGateway,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        user_batch_size: int = DEFAULT_USER_BATCH_SIZE,
        text_extractor: Callable[[str], str] = html_to_text,
    ):
        self.gateway = gateway
        self.concurrency_limit = concurrency_limit
        self.user_batch_size = user_batch_size
        self.text_extractor = text_extractor

    async def export(self, cmid: int) -> FeedbackExportResult:
        """
        Export grades and feedback for the assignment behind `cmid`.

        Args:
            cmid: Course module id, as seen in the Moodle URL

        Returns:
            FeedbackExportResult
        """
        if not is_positive_int(cmid):
            return FeedbackExportResult.failure("The cmid parameter must be a positive integer.")

        start_time = time.monotonic()
        logger.info(f"Starting feedback export for cmid={cmid}")

        # Resolve the assignment instance
        module_result = await self.gateway.get_course_module(cmid)

        if isinstance(module_result, CallFailure):
            logger.error(f"Error getting course module {cmid}: {module_result.error.message}")
            return FeedbackExportResult.failure(
                f"Could not retrieve the course module: {module_result.error.message}"
            )

        cm = module_result.data
        if cm is None or not cm.instance:
            return FeedbackExportResult.failure(
                "The given identifier does not match a valid course module."
            )

        if cm.modname != ASSIGNMENT_MODNAME:
            return FeedbackExportResult.failure(
                f"This id does not refer to an assignment (detected type: {cm.modname})."
            )

        assignment_id = cm.instance
        logger.info(f"Resolved cmid={cmid} to assignment instance={assignment_id}")

        # List submissions
        submissions_result = await self.gateway.get_submissions(assignment_id)

        if isinstance(submissions_result, CallFailure):
            logger.error(
                f"Error getting submissions for assignment {assignment_id}: "
                f"{submissions_result.error.message}"
            )
            return FeedbackExportResult.failure(
                f"Could not retrieve the submissions: {submissions_result.error.message}"
            )

        submissions = submissions_result.data
        if not submissions:
            logger.info(f"No submissions found for assignment {assignment_id}")
            return FeedbackExportResult(
                success=True,
                rows=[],
                stats=ExportStatistics(duration_ms=_elapsed_ms(start_time)),
            )

        # dict keeps first-seen order
        user_ids = list(dict.fromkeys(s.user_id for s in submissions))
        logger.info(f"Found {len(user_ids)} unique students")

        users = await fetch_users_in_batches(self.gateway, user_ids, self.user_batch_size)
        logger.info(f"Fetched {len(users)} user profiles")

        async def collect(user_id: int) -> _StudentOutcome:
            return await self._collect_student(assignment_id, user_id, users.get(user_id))

        outcomes = await run_bounded(user_ids, collect, self.concurrency_limit)

        stats = ExportStatistics(total_students=len(outcomes))
        for outcome in outcomes:
            if outcome.failed:
                stats.error_count += 1
            elif outcome.graded:
                stats.graded_count += 1
            else:
                stats.ungraded_count += 1
        stats.duration_ms = _elapsed_ms(start_time)

        logger.info(
            f"Export completed in {stats.duration_ms}ms: {stats.total_students} students, "
            f"{stats.graded_count} graded, {stats.ungraded_count} ungraded, "
            f"{stats.error_count} errors"
        )

        return FeedbackExportResult(
            success=True,
            rows=[o.row for o in outcomes],
            stats=stats,
        )

    async def _collect_student(
        self,
        assignment_id: int,
        user_id: int,
        user: Student | None,
    ) -> _StudentOutcome:
        """Build one student's row. Never raises."""
        row = StudentFeedbackRow(
            user_id=user_id,
            last_name=user.last_name if user else "",
            first_name=user.first_name if user else "",
        )

        try:
            status_result = await self.gateway.get_submission_status(assignment_id, user_id)

            if isinstance(status_result, CallFailure):
                logger.warning(
                    f"Error getting status for user {user_id}: {status_result.error.message}"
                )
                return _StudentOutcome(row=row, failed=True)

            feedback = status_result.data.feedback
            if feedback is None:
                return _StudentOutcome(row=row)

            row.grade = feedback.grade or ""
            row.feedback = extract_feedback_comment(feedback.plugins, self.text_extractor)
            return _StudentOutcome(row=row, graded=bool(feedback.grade))

        except Exception:
            logger.exception(f"Unexpected error collecting feedback for user {user_id}")
            row.grade = ""
            row.feedback = ""
            return _StudentOutcome(row=row, failed=True)


def _elapsed_ms(start_time: float) -> int:
    return int((time.monotonic() - start_time) * 1000)


async def export_assignment_feedback(
    gateway: MoodleGateway,
    cmid: int,
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
    user_batch_size: int = DEFAULT_USER_BATCH_SIZE,
) -> FeedbackExportResult:
    """Export grades and feedback for one assignment course module."""
    exporter = AssignmentFeedbackExporter(
        gateway,
        concurrency_limit=concurrency_limit,
        user_batch_size=user_batch_size,
    )
    return await exporter.export(cmid)
