"""
Moodle REST API gateway.

This module issues single calls to Moodle's Web Services REST API and
normalizes every outcome into a tagged result: either a CallSuccess holding
the decoded payload or a CallFailure describing what went wrong. Failures
are never raised past the gateway boundary, so orchestration code can
branch on the result type instead of wrapping each call in try/except.

Moodle Web Services Documentation:
https://docs.moodle.org/dev/Web_service_API_functions
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar, Union

import httpx

from ..config.models import MoodleSettings
from ..utils.logging import get_logger
from .models import CourseModule, Student, Submission, SubmissionStatus

logger = get_logger(__name__)

T = TypeVar("T")
U = TypeVar("U")

REST_ENDPOINT = "/webservice/rest/server.php"


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class MoodleAPIError(Exception):
    """Base exception for Moodle API errors."""

    def __init__(self, message: str, error_code: str | None = None, debug_info: str | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.debug_info = debug_info


class MoodleConfigurationError(MoodleAPIError):
    """Base URL or token is not configured."""

    pass


class MoodleTransportError(MoodleAPIError):
    """Network failure or non-2xx HTTP response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MoodleTimeoutError(MoodleTransportError):
    """The request did not complete within the configured timeout."""

    pass


class MoodleAuthError(MoodleAPIError):
    """Authentication or authorization error."""

    pass


class MoodleNotFoundError(MoodleAPIError):
    """Resource not found error."""

    pass


class MoodleValidationError(MoodleAPIError):
    """Invalid parameters or validation error."""

    pass


# -----------------------------------------------------------------------------
# Call results
# -----------------------------------------------------------------------------


class ErrorKind(Enum):
    """Categories of gateway failures."""

    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    APPLICATION = "application"


@dataclass(frozen=True)
class MoodleError:
    """Error record carried by a failed call."""

    message: str
    code: str | None = None
    kind: ErrorKind = ErrorKind.APPLICATION
    http_status: int | None = None

    @property
    def is_timeout(self) -> bool:
        return self.kind is ErrorKind.TIMEOUT

    @classmethod
    def from_exception(cls, exc: MoodleAPIError) -> "MoodleError":
        """Translate a gateway exception into an error record."""
        if isinstance(exc, MoodleConfigurationError):
            kind = ErrorKind.CONFIGURATION
        elif isinstance(exc, MoodleTimeoutError):
            kind = ErrorKind.TIMEOUT
        elif isinstance(exc, MoodleTransportError):
            kind = ErrorKind.TRANSPORT
        else:
            kind = ErrorKind.APPLICATION

        return cls(
            message=exc.message,
            code=exc.error_code,
            kind=kind,
            http_status=getattr(exc, "status_code", None),
        )


@dataclass(frozen=True)
class CallSuccess(Generic[T]):
    """A call that returned a usable payload."""

    data: T


@dataclass(frozen=True)
class CallFailure:
    """A call that failed; `error` describes the failure."""

    error: MoodleError


CallResult = Union[CallSuccess[T], CallFailure]


# -----------------------------------------------------------------------------
# Gateway
# -----------------------------------------------------------------------------


class MoodleGateway:
    """
    Async Moodle REST API gateway.

    Usage:
        settings = MoodleSettings(base_url="https://moodle.example.edu", token="...")
        async with MoodleGateway(settings) as gateway:
            result = await gateway.get_course_module(123)
            if isinstance(result, CallFailure):
                ...
    """

    # Moodle web service response format
    RESPONSE_FORMAT = "json"

    def __init__(
        self,
        settings: MoodleSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the gateway.

        Args:
            settings: Moodle connection settings (may be incomplete)
            transport: Optional httpx transport, used by tests to stub Moodle
        """
        self.settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout,
                verify=self.settings.verify_ssl,
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "MoodleGateway":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Core API Methods
    # -------------------------------------------------------------------------

    async def call(self, wsfunction: str, **params: Any) -> CallResult[Any]:
        """
        Make a call to the Moodle Web Services API.

        Args:
            wsfunction: The Moodle web service function name
            **params: Function parameters (lists and dicts are flattened)

        Returns:
            CallSuccess with the decoded JSON body, or CallFailure
        """
        try:
            data = await self._request(wsfunction, params)
        except MoodleAPIError as e:
            return CallFailure(MoodleError.from_exception(e))
        return CallSuccess(data)

    async def _request(self, wsfunction: str, params: dict[str, Any]) -> Any:
        """
        Perform the HTTP round trip.

        Raises:
            MoodleConfigurationError: If base URL or token is missing
            MoodleTimeoutError: If the request timed out
            MoodleTransportError: On network failure or non-2xx status
            MoodleAPIError: If Moodle reports an error in the body
        """
        if not self.settings.is_complete:
            logger.error(f"Moodle configuration incomplete, not calling {wsfunction}")
            raise MoodleConfigurationError("Moodle configuration is incomplete")

        endpoint = f"{self.settings.base_url.rstrip('/')}{REST_ENDPOINT}"

        request_params = {
            "wstoken": self.settings.token,
            "wsfunction": wsfunction,
            "moodlewsrestformat": self.RESPONSE_FORMAT,
            **self._flatten_params(params),
        }

        logger.debug(f"Calling Moodle API: {wsfunction}")

        try:
            # httpx timeouts are per phase; cap the whole round trip as well
            response = await asyncio.wait_for(
                self.client.post(endpoint, data=request_params),
                timeout=self.settings.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.error(f"Timeout calling {wsfunction}: {e!r}")
            raise MoodleTimeoutError("Request timeout") from e
        except httpx.RequestError as e:
            logger.error(f"Request error calling {wsfunction}: {e!r}")
            raise MoodleTransportError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.error(f"HTTP error calling {wsfunction}: {response.status_code}")
            raise MoodleTransportError(
                f"HTTP error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Invalid JSON returned by {wsfunction}")
            raise MoodleAPIError("Invalid response from Moodle", "invalidresponse") from e

        # Check for Moodle-level errors
        self._check_error(data, wsfunction)

        return data

    def _flatten_params(self, params: dict[str, Any], prefix: str = "") -> dict[str, str]:
        """
        Flatten nested parameters for Moodle's expected format.

        Moodle expects array parameters in the format:
        param[0][key] = value

        Args:
            params: Parameters to flatten
            prefix: Current parameter prefix

        Returns:
            Flattened parameter dictionary with string values
        """
        result = {}

        for key, value in params.items():
            full_key = f"{prefix}[{key}]" if prefix else key

            if value is None:
                continue
            elif isinstance(value, dict):
                result.update(self._flatten_params(value, full_key))
            elif isinstance(value, (list, tuple)):
                for i, item in enumerate(value):
                    if isinstance(item, (dict, list, tuple)):
                        result.update(self._flatten_params({str(i): item}, full_key))
                    else:
                        result[f"{full_key}[{i}]"] = self._stringify(item)
            else:
                result[full_key] = self._stringify(value)

        return result

    @staticmethod
    def _stringify(value: Any) -> str:
        if isinstance(value, bool):
            return str(int(value))
        return str(value)

    def _check_error(self, data: Any, wsfunction: str) -> None:
        """
        Check API response for errors.

        Moodle reports application errors with HTTP 200 and a body carrying
        `exception` and/or `errorcode`.

        Args:
            data: Parsed response data
            wsfunction: The function that was called

        Raises:
            MoodleAuthError: If authentication/authorization failed
            MoodleNotFoundError: If resource was not found
            MoodleValidationError: If validation failed
            MoodleAPIError: For other errors
        """
        if not isinstance(data, dict):
            return

        if "exception" in data or "errorcode" in data:
            error_code = data.get("errorcode", "unknown")
            message = data.get("message") or data.get("exception") or "Unknown Moodle error"
            debug_info = data.get("debuginfo")

            logger.error(f"Moodle API error in {wsfunction}: [{error_code}] {message}")

            # Map to specific exception types
            if error_code in ("invalidtoken", "accessexception", "requireloginerror"):
                raise MoodleAuthError(message, error_code, debug_info)
            elif error_code in ("invalidrecord", "cannotfindrecord"):
                raise MoodleNotFoundError(message, error_code, debug_info)
            elif error_code in ("invalidparameter", "invalidargument"):
                raise MoodleValidationError(message, error_code, debug_info)
            else:
                raise MoodleAPIError(message, error_code, debug_info)

    def _decode(self, result: CallResult[Any], parser: Callable[[Any], U], wsfunction: str) -> CallResult[U]:
        """Decode a successful payload, turning unexpected shapes into failures."""
        if isinstance(result, CallFailure):
            return result
        try:
            return CallSuccess(parser(result.data))
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            logger.error(f"Unexpected response shape from {wsfunction}: {e!r}")
            return CallFailure(
                MoodleError(
                    message=f"Unexpected response from {wsfunction}",
                    code="invalidresponse",
                    kind=ErrorKind.APPLICATION,
                )
            )

    # -------------------------------------------------------------------------
    # Course API
    # -------------------------------------------------------------------------

    async def get_course_module(self, cmid: int) -> CallResult[CourseModule | None]:
        """
        Resolve a course module id to its activity instance.

        Uses: core_course_get_course_module

        Returns:
            CourseModule, or None when the response carries no `cm` record
        """
        wsfunction = "core_course_get_course_module"
        result = await self.call(wsfunction, cmid=cmid)

        def parse(data: dict[str, Any]) -> CourseModule | None:
            cm = data.get("cm")
            return CourseModule.from_api_response(cm) if cm else None

        return self._decode(result, parse, wsfunction)

    async def get_course_contents(self, course_id: int) -> CallResult[list[CourseModule]]:
        """
        List every module of a course, section by section.

        Uses: core_course_get_contents
        """
        wsfunction = "core_course_get_contents"
        result = await self.call(wsfunction, courseid=course_id)

        def parse(sections: list[dict[str, Any]]) -> list[CourseModule]:
            modules = []
            for section in sections or []:
                for module_data in section.get("modules") or []:
                    module = CourseModule.from_api_response(module_data)
                    module.course_id = course_id
                    modules.append(module)
            return modules

        return self._decode(result, parse, wsfunction)

    # -------------------------------------------------------------------------
    # Assignment Submissions API
    # -------------------------------------------------------------------------

    async def get_submissions(self, assignment_id: int) -> CallResult[list[Submission]]:
        """
        Get all submissions for an assignment instance.

        Uses: mod_assign_get_submissions
        """
        wsfunction = "mod_assign_get_submissions"
        result = await self.call(wsfunction, assignmentids=[assignment_id])

        def parse(data: dict[str, Any]) -> list[Submission]:
            assignments = data.get("assignments") or []
            matching = [a for a in assignments if a.get("assignmentid") == assignment_id]
            target = matching or assignments[:1]
            if not target:
                return []
            return [Submission.from_api_response(s) for s in target[0].get("submissions") or []]

        return self._decode(result, parse, wsfunction)

    async def get_submission_status(self, assignment_id: int, user_id: int) -> CallResult[SubmissionStatus]:
        """
        Get one student's submission status, including feedback and the
        files of the last attempt.

        Uses: mod_assign_get_submission_status
        """
        wsfunction = "mod_assign_get_submission_status"
        result = await self.call(wsfunction, assignid=assignment_id, userid=user_id)
        return self._decode(result, SubmissionStatus.from_api_response, wsfunction)

    # -------------------------------------------------------------------------
    # Users API
    # -------------------------------------------------------------------------

    async def get_users_by_ids(self, user_ids: list[int]) -> CallResult[list[Student]]:
        """
        Look up users by id.

        Uses: core_user_get_users_by_field
        """
        wsfunction = "core_user_get_users_by_field"
        result = await self.call(wsfunction, field="id", values=list(user_ids))

        def parse(data: list[dict[str, Any]]) -> list[Student]:
            return [Student.from_api_response(u) for u in data or []]

        return self._decode(result, parse, wsfunction)

    async def get_enrolled_users(
        self,
        course_id: int,
        capability: str = "mod/assign:submit",
    ) -> CallResult[list[Student]]:
        """
        List users enrolled in a course holding a capability.

        Uses: core_enrol_get_enrolled_users_with_capability
        """
        wsfunction = "core_enrol_get_enrolled_users_with_capability"
        result = await self.call(
            wsfunction,
            coursecapabilities=[{"courseid": course_id, "capabilities": [capability]}],
        )

        def parse(data: list[dict[str, Any]]) -> list[Student]:
            users = []
            for entry in data or []:
                # Grouped per course/capability, each with its own user list
                if "users" in entry:
                    users.extend(entry.get("users") or [])
                else:
                    users.append(entry)
            return [Student.from_api_response(u) for u in users]

        return self._decode(result, parse, wsfunction)


# -----------------------------------------------------------------------------
# Convenience Functions
# -----------------------------------------------------------------------------


def create_gateway(settings: MoodleSettings | None = None) -> MoodleGateway:
    """
    Create a MoodleGateway, loading settings from the environment if needed.

    Args:
        settings: Moodle settings (loaded via ConfigLoader when omitted)

    Returns:
        Configured MoodleGateway instance
    """
    if settings is None:
        from ..config.loader import ConfigLoader

        settings = ConfigLoader().load().moodle

    return MoodleGateway(settings)
