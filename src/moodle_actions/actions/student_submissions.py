"""
Student submissions service.

Lists the assignments of a course and gathers one student's submitted
files across a selection of assignments for preview.
"""

from dataclasses import dataclass, field
from enum import Enum

from ..config.models import DEFAULT_CONCURRENCY_LIMIT
from ..moodle.api import CallFailure, MoodleGateway
from ..moodle.models import Plugin, Student
from ..utils.concurrency import run_bounded
from ..utils.logging import get_logger
from .validation import is_positive_int

logger = get_logger(__name__)

ASSIGNMENT_MODNAME = "assign"
FILE_PLUGIN = "file"
SUBMISSION_FILES_AREA = "submission_files"


class SubmissionState(str, Enum):
    """Submission status of a student, per assignment or overall."""

    SUBMITTED = "submitted"
    DRAFT = "draft"
    NO_SUBMISSION = "nosubmission"

    @classmethod
    def from_moodle(cls, status: str | None) -> "SubmissionState":
        """Map a Moodle submission status ("new", "reopened", ...) to a state."""
        if status == "submitted":
            return cls.SUBMITTED
        if status == "draft":
            return cls.DRAFT
        return cls.NO_SUBMISSION


@dataclass(frozen=True)
class AssignmentDescriptor:
    """An assignment as selected by staff: course module plus instance."""

    cmid: int
    instance_id: int
    name: str
    visible: bool = True


@dataclass
class StudentFileDescriptor:
    """A file attached to a student's submission."""

    filename: str
    filepath: str
    filesize: int
    fileurl: str
    mimetype: str
    assignment_name: str
    assignment_id: int
    cmid: int

    @property
    def key(self) -> str:
        """Identifier unique within one student's file list."""
        return f"{self.assignment_id}:{self.filepath}{self.filename}"


@dataclass
class StudentSubmissionAggregate:
    """All selected submissions of one student, merged."""

    user_id: int
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    files: list[StudentFileDescriptor] = field(default_factory=list)
    status: SubmissionState = SubmissionState.NO_SUBMISSION


@dataclass
class AssignmentsResult:
    success: bool
    assignments: list[AssignmentDescriptor] = field(default_factory=list)
    error: str | None = None


@dataclass
class StudentsResult:
    success: bool
    students: list[Student] = field(default_factory=list)
    error: str | None = None


@dataclass
class StudentFilesResult:
    success: bool
    data: StudentSubmissionAggregate | None = None
    error: str | None = None


@dataclass
class _AssignmentOutcome:
    files: list[StudentFileDescriptor] = field(default_factory=list)
    status: SubmissionState = SubmissionState.NO_SUBMISSION


def merge_submission_states(states: list[SubmissionState]) -> SubmissionState:
    """Combine per-assignment states: submitted > draft > nosubmission."""
    if SubmissionState.SUBMITTED in states:
        return SubmissionState.SUBMITTED
    if SubmissionState.DRAFT in states:
        return SubmissionState.DRAFT
    return SubmissionState.NO_SUBMISSION


def extract_submission_files(
    plugins: list[Plugin],
    assignment: AssignmentDescriptor,
) -> list[StudentFileDescriptor]:
    """Collect the files of the file plugin's submission_files area."""
    files = []

    for plugin in plugins:
        if plugin.type != FILE_PLUGIN:
            continue
        for file_area in plugin.file_areas:
            if file_area.area != SUBMISSION_FILES_AREA:
                continue
            for f in file_area.files:
                files.append(
                    StudentFileDescriptor(
                        filename=f.filename,
                        filepath=f.filepath,
                        filesize=f.filesize,
                        fileurl=f.url,
                        mimetype=f.mimetype,
                        assignment_name=assignment.name,
                        assignment_id=assignment.instance_id,
                        cmid=assignment.cmid,
                    )
                )

    return files


async def list_course_assignments(gateway: MoodleGateway, course_id: int) -> AssignmentsResult:
    """
    List all assignments in a course.

    Args:
        gateway: Moodle gateway
        course_id: Moodle course id

    Returns:
        AssignmentsResult in course order
    """
    if not is_positive_int(course_id):
        return AssignmentsResult(
            success=False, error="The courseId parameter must be a positive integer."
        )

    logger.info(f"Listing assignments for course {course_id}")

    contents_result = await gateway.get_course_contents(course_id)

    if isinstance(contents_result, CallFailure):
        logger.error(f"Error getting course contents: {contents_result.error.message}")
        return AssignmentsResult(
            success=False,
            error=f"Could not retrieve the course contents: {contents_result.error.message}",
        )

    assignments = [
        AssignmentDescriptor(
            cmid=module.id,
            instance_id=module.instance,
            name=module.name,
            visible=module.visible,
        )
        for module in contents_result.data
        if module.modname == ASSIGNMENT_MODNAME
    ]

    logger.info(f"Found {len(assignments)} assignments in course {course_id}")
    return AssignmentsResult(success=True, assignments=assignments)


async def list_course_students(gateway: MoodleGateway, course_id: int) -> StudentsResult:
    """List the users of a course who can submit assignments, sorted by name."""
    if not is_positive_int(course_id):
        return StudentsResult(
            success=False, error="The courseId parameter must be a positive integer."
        )

    result = await gateway.get_enrolled_users(course_id)

    if isinstance(result, CallFailure):
        logger.error(f"Error getting enrolled users: {result.error.message}")
        return StudentsResult(
            success=False,
            error=f"Could not retrieve the enrolled students: {result.error.message}",
        )

    students = sorted(result.data, key=lambda s: (s.last_name.lower(), s.first_name.lower()))
    return StudentsResult(success=True, students=students)


class StudentFilesCollector:
    """Gathers one student's files across selected assignments."""

    def __init__(self, gateway: MoodleGateway, concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT):
        self.gateway = gateway
        self.concurrency_limit = concurrency_limit

    async def collect(
        self,
        user_id: int,
        assignments: list[AssignmentDescriptor],
    ) -> StudentFilesResult:
        """
        Get files for a student across multiple assignments.

        Args:
            user_id: Moodle user id of the student
            assignments: Selected assignments, in display order

        Returns:
            StudentFilesResult with the merged aggregate
        """
        error = self._validate(user_id, assignments)
        if error:
            return StudentFilesResult(success=False, error=error)

        logger.info(f"Getting files for user {user_id} across {len(assignments)} assignments")

        user = await self._fetch_user(user_id)

        async def collect_assignment(assignment: AssignmentDescriptor) -> _AssignmentOutcome:
            return await self._collect_assignment(user_id, assignment)

        outcomes = await run_bounded(assignments, collect_assignment, self.concurrency_limit)

        files = [f for outcome in outcomes for f in outcome.files]
        status = merge_submission_states([o.status for o in outcomes])

        logger.info(f"Found {len(files)} files for user {user_id} (status: {status.value})")

        return StudentFilesResult(
            success=True,
            data=StudentSubmissionAggregate(
                user_id=user_id,
                first_name=user.first_name if user else "",
                last_name=user.last_name if user else "",
                email=user.email if user else None,
                files=files,
                status=status,
            ),
        )

    @staticmethod
    def _validate(user_id: int, assignments: list[AssignmentDescriptor]) -> str | None:
        if not is_positive_int(user_id):
            return "The userId parameter must be a positive integer."
        if not assignments:
            return "The assignments parameter is required and must be a non-empty list."
        for assignment in assignments:
            if (
                not is_positive_int(assignment.cmid)
                or not is_positive_int(assignment.instance_id)
                or not assignment.name
            ):
                return "Each assignment must have a cmid, an assignid and a name."
        return None

    async def _fetch_user(self, user_id: int) -> Student | None:
        """Look up the student; failures only cost the name fields."""
        result = await self.gateway.get_users_by_ids([user_id])

        if isinstance(result, CallFailure):
            logger.warning(f"Could not fetch profile of user {user_id}: {result.error.message}")
            return None

        return result.data[0] if result.data else None

    async def _collect_assignment(
        self,
        user_id: int,
        assignment: AssignmentDescriptor,
    ) -> _AssignmentOutcome:
        """Fetch one assignment's submission for the student. Never raises."""
        try:
            status_result = await self.gateway.get_submission_status(assignment.instance_id, user_id)

            if isinstance(status_result, CallFailure):
                logger.warning(
                    f"Error getting submission for assignment {assignment.instance_id}: "
                    f"{status_result.error.message}"
                )
                return _AssignmentOutcome()

            submission = status_result.data.last_attempt
            if submission is None:
                return _AssignmentOutcome()

            return _AssignmentOutcome(
                files=extract_submission_files(submission.plugins, assignment),
                status=SubmissionState.from_moodle(submission.status),
            )

        except Exception:
            logger.exception(f"Unexpected error for assignment {assignment.instance_id}")
            return _AssignmentOutcome()


async def get_student_files(
    gateway: MoodleGateway,
    user_id: int,
    assignments: list[AssignmentDescriptor],
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
) -> StudentFilesResult:
    """Get one student's files across the selected assignments."""
    collector = StudentFilesCollector(gateway, concurrency_limit=concurrency_limit)
    return await collector.collect(user_id, assignments)
