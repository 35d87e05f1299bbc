"""Moodle data models."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Student:
    """Represents a Moodle user looked up by id."""

    id: int
    username: str = ""
    email: str | None = None
    first_name: str = ""
    last_name: str = ""

    @property
    def full_name(self) -> str:
        """Get the student's full name."""
        return f"{self.first_name} {self.last_name}".strip() or self.username

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Student":
        """Create a Student from Moodle API response data."""
        return cls(
            id=data["id"],
            username=data.get("username", ""),
            email=data.get("email"),
            first_name=data.get("firstname", ""),
            last_name=data.get("lastname", ""),
        )


@dataclass
class CourseModule:
    """A course module (activity) as returned by the course APIs."""

    id: int
    instance: int
    modname: str
    name: str = ""
    visible: bool = True
    course_id: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CourseModule":
        """Create a CourseModule from a `cm` record or a course contents module."""
        return cls(
            id=data.get("id", 0),
            instance=data.get("instance", 0),
            modname=data.get("modname", ""),
            name=data.get("name", ""),
            visible=data.get("visible", 1) != 0,
            course_id=data.get("course", 0),
        )


@dataclass
class Submission:
    """One student's submission record for an assignment."""

    id: int
    user_id: int
    status: str = "new"
    grading_status: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Submission":
        """Create a Submission from Moodle API response data."""
        return cls(
            id=data.get("id", 0),
            user_id=data.get("userid", 0),
            status=data.get("status", "new"),
            grading_status=data.get("gradingstatus"),
        )


@dataclass
class SubmissionFile:
    """Represents a file attached to a submission."""

    filename: str
    filepath: str = "/"
    filesize: int = 0
    url: str = ""
    mimetype: str = ""
    time_modified: int | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "SubmissionFile":
        return cls(
            filename=data.get("filename", ""),
            filepath=data.get("filepath", "/"),
            filesize=data.get("filesize", 0),
            url=data.get("fileurl", ""),
            mimetype=data.get("mimetype", ""),
            time_modified=data.get("timemodified"),
        )


@dataclass
class FileArea:
    """A named group of files inside a submission plugin."""

    area: str
    files: list[SubmissionFile] = field(default_factory=list)


@dataclass
class EditorField:
    """A rich-text field of a submission or feedback plugin."""

    name: str
    text: str = ""
    format: int = 1


@dataclass
class Plugin:
    """A submission or feedback plugin (e.g. "file", "comments")."""

    type: str
    name: str = ""
    file_areas: list[FileArea] = field(default_factory=list)
    editor_fields: list[EditorField] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Plugin":
        file_areas = [
            FileArea(
                area=area.get("area", ""),
                files=[SubmissionFile.from_api_response(f) for f in area.get("files") or []],
            )
            for area in data.get("fileareas") or []
        ]
        editor_fields = [
            EditorField(
                name=ef.get("name", ""),
                text=ef.get("text") or "",
                format=ef.get("format", 1),
            )
            for ef in data.get("editorfields") or []
        ]
        return cls(
            type=data.get("type", ""),
            name=data.get("name", ""),
            file_areas=file_areas,
            editor_fields=editor_fields,
        )


def parse_plugins(data: list[dict[str, Any]] | None) -> list[Plugin]:
    """Parse a list of plugin records, tolerating a missing list."""
    return [Plugin.from_api_response(p) for p in data or []]


@dataclass
class SubmissionAttempt:
    """The latest submission attempt of a student."""

    id: int
    user_id: int
    status: str
    attempt_number: int = 0
    time_modified: int | None = None
    plugins: list[Plugin] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "SubmissionAttempt":
        return cls(
            id=data.get("id", 0),
            user_id=data.get("userid", 0),
            status=data.get("status", ""),
            attempt_number=data.get("attemptnumber", 0),
            time_modified=data.get("timemodified"),
            plugins=parse_plugins(data.get("plugins")),
        )


@dataclass
class Feedback:
    """Grading feedback attached to a submission status."""

    grade: str | None = None
    plugins: list[Plugin] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "Feedback":
        grade = data.get("grade") or {}
        raw_grade = grade.get("grade")
        return cls(
            grade=str(raw_grade) if raw_grade not in (None, "") else None,
            plugins=parse_plugins(data.get("plugins")),
        )


@dataclass
class SubmissionStatus:
    """Decoded mod_assign_get_submission_status response."""

    last_attempt: SubmissionAttempt | None = None
    feedback: Feedback | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "SubmissionStatus":
        last_attempt = None
        attempt_data = (data.get("lastattempt") or {}).get("submission")
        if attempt_data:
            last_attempt = SubmissionAttempt.from_api_response(attempt_data)

        feedback = None
        if data.get("feedback"):
            feedback = Feedback.from_api_response(data["feedback"])

        return cls(last_attempt=last_attempt, feedback=feedback)
