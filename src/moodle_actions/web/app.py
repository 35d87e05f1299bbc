"""
HTTP routes for the staff actions.

Authentication is not handled here; pass the session check as an app-level
dependency to create_app.
"""

from collections.abc import Sequence
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Annotated

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Request, status
from fastapi.params import Depends as DependsParam
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import AliasChoices, BaseModel, Field, StrictInt, ValidationError

from ..actions.feedback_export import AssignmentFeedbackExporter
from ..actions.file_proxy import FileProxy, FileProxyError
from ..actions.student_submissions import (
    AssignmentDescriptor,
    StudentFilesCollector,
    list_course_assignments,
    list_course_students,
)
from ..actions.validation import parse_positive_int
from ..config.loader import load_settings
from ..config.models import AppSettings
from ..moodle.api import MoodleGateway
from ..output.csv_export import export_filename, feedback_rows_to_csv
from ..utils.logging import get_logger

logger = get_logger(__name__)

UNEXPECTED_ERROR = "An unexpected error occurred."

router = APIRouter(prefix="/api/actions", tags=["actions"])


# -----------------------------------------------------------------------------
# Request models
# -----------------------------------------------------------------------------


class AssignmentSelection(BaseModel):
    cmid: StrictInt
    instance_id: StrictInt = Field(validation_alias=AliasChoices("assignid", "instance_id"))
    name: str

    def to_descriptor(self) -> AssignmentDescriptor:
        return AssignmentDescriptor(cmid=self.cmid, instance_id=self.instance_id, name=self.name)


class StudentFilesRequest(BaseModel):
    user_id: StrictInt = Field(validation_alias=AliasChoices("userId", "user_id"))
    assignments: list[AssignmentSelection]


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_gateway(request: Request) -> MoodleGateway:
    return request.app.state.gateway


def get_file_proxy(request: Request) -> FileProxy:
    return request.app.state.file_proxy


SettingsDep = Annotated[AppSettings, Depends(get_settings)]
GatewayDep = Annotated[MoodleGateway, Depends(get_gateway)]
FileProxyDep = Annotated[FileProxy, Depends(get_file_proxy)]


def error_response(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@router.get("/assignment-feedback/export")
async def export_feedback(
    settings: SettingsDep,
    gateway: GatewayDep,
    cmid: str | None = None,
) -> Response:
    """Export an assignment's grades and feedback as a CSV download."""
    if not cmid:
        return error_response("The cmid parameter is required.")

    parsed_cmid = parse_positive_int(cmid)
    if parsed_cmid is None:
        return error_response("The cmid parameter must be a positive integer.")

    exporter = AssignmentFeedbackExporter(
        gateway,
        concurrency_limit=settings.concurrency_limit,
        user_batch_size=settings.user_batch_size,
    )
    result = await exporter.export(parsed_cmid)

    if not result.success:
        return error_response(result.error or "The export failed.")

    logger.info(f"Export successful for cmid={parsed_cmid}, stats: {result.stats}")

    return Response(
        content=feedback_rows_to_csv(result.rows).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename(parsed_cmid)}"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )


@router.get("/student-submissions/assignments")
async def course_assignments(gateway: GatewayDep, courseId: str | None = None):
    """List the assignments of a course."""
    if not courseId:
        return error_response("The courseId parameter is required.")

    course_id = parse_positive_int(courseId)
    if course_id is None:
        return error_response("The courseId parameter must be a positive integer.")

    result = await list_course_assignments(gateway, course_id)
    if not result.success:
        return error_response(result.error or UNEXPECTED_ERROR)

    return {"success": True, "assignments": [asdict(a) for a in result.assignments]}


@router.get("/student-submissions/students")
async def course_students(gateway: GatewayDep, courseId: str | None = None):
    """List the students of a course who can submit assignments."""
    course_id = parse_positive_int(courseId)
    if course_id is None:
        return error_response("The courseId parameter must be a positive integer.")

    result = await list_course_students(gateway, course_id)
    if not result.success:
        return error_response(result.error or UNEXPECTED_ERROR)

    return {"success": True, "students": [asdict(s) for s in result.students]}


@router.post("/student-submissions/files")
async def student_files(request: Request, settings: SettingsDep, gateway: GatewayDep):
    """Gather one student's files across the selected assignments."""
    try:
        body = StudentFilesRequest.model_validate(await request.json())
    except ValueError as e:
        # ValidationError and JSONDecodeError are both ValueErrors
        detail = "Invalid request body."
        if isinstance(e, ValidationError):
            detail = "The request body must contain a userId and a list of assignments."
        return error_response(detail)

    collector = StudentFilesCollector(gateway, concurrency_limit=settings.concurrency_limit)
    result = await collector.collect(body.user_id, [a.to_descriptor() for a in body.assignments])

    if not result.success:
        return error_response(result.error or UNEXPECTED_ERROR)

    return {"success": True, "data": asdict(result.data)}


@router.get("/student-submissions/proxy-file")
async def proxy_file(request: Request, file_proxy: FileProxyDep, url: str | None = None) -> Response:
    """Stream a Moodle file, forwarding the client's Range header."""
    if not url:
        return error_response("The url parameter is required.")

    try:
        proxied = await file_proxy.open(url, request.headers.get("range"))
    except FileProxyError as e:
        return error_response(e.message, e.status_code)

    cleanup = BackgroundTasks()
    cleanup.add_task(proxied.aclose)

    return StreamingResponse(
        proxied.iter_bytes(),
        status_code=proxied.status_code,
        headers=proxied.headers,
        background=cleanup,
    )


# -----------------------------------------------------------------------------
# Application factory
# -----------------------------------------------------------------------------


def create_app(
    settings: AppSettings | None = None,
    dependencies: Sequence[DependsParam] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (loaded from env/.env when omitted)
        dependencies: App-wide dependencies, e.g. the session check
        transport: Optional httpx transport shared by the Moodle clients

    Returns:
        Configured FastAPI app
    """
    settings = settings or load_settings()

    gateway = MoodleGateway(settings.moodle, transport=transport)
    file_proxy = FileProxy(settings.moodle, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await gateway.aclose()
        await file_proxy.aclose()

    app = FastAPI(
        title="Moodle Staff Actions",
        lifespan=lifespan,
        dependencies=list(dependencies or []),
    )
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.file_proxy = file_proxy

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unexpected error on {request.url.path}")
        return error_response(UNEXPECTED_ERROR, status.HTTP_500_INTERNAL_SERVER_ERROR)

    app.include_router(router)
    return app
