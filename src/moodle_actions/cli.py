"""Console script for moodle_actions."""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .actions.feedback_export import export_assignment_feedback
from .actions.student_submissions import (
    get_student_files,
    list_course_assignments,
    list_course_students,
)
from .config.loader import load_settings
from .config.models import AppSettings
from .moodle.api import MoodleGateway
from .output.csv_export import export_filename, feedback_rows_to_csv
from .utils.logging import setup_logging
from .utils.text import format_file_size

app = typer.Typer(help="Staff actions over the Moodle web services API.")
console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help="YAML settings file.")


def _load(config: Optional[Path]) -> AppSettings:
    settings = load_settings(config)
    setup_logging(settings.log_level)
    return settings


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(code=1)


@app.command("export-feedback")
def export_feedback(
    cmid: int = typer.Argument(..., help="Course module id of the assignment."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="CSV destination."),
    config: Optional[Path] = ConfigOption,
):
    """Export grades and feedback of an assignment to CSV."""
    settings = _load(config)

    async def run():
        async with MoodleGateway(settings.moodle) as gateway:
            return await export_assignment_feedback(
                gateway,
                cmid,
                concurrency_limit=settings.concurrency_limit,
                user_batch_size=settings.user_batch_size,
            )

    result = asyncio.run(run())
    if not result.success:
        _fail(result.error or "The export failed.")

    destination = output or Path(export_filename(cmid))
    destination.write_text(feedback_rows_to_csv(result.rows), encoding="utf-8", newline="")

    stats = result.stats
    console.print(f"[green]Exported {stats.total_students} students to {destination}[/green]")
    console.print(
        f"Graded: {stats.graded_count}  Ungraded: {stats.ungraded_count}  "
        f"Errors: {stats.error_count}  ({stats.duration_ms} ms)"
    )


@app.command("assignments")
def assignments(
    course_id: int = typer.Argument(..., help="Moodle course id."),
    config: Optional[Path] = ConfigOption,
):
    """List the assignments of a course."""
    settings = _load(config)

    async def run():
        async with MoodleGateway(settings.moodle) as gateway:
            return await list_course_assignments(gateway, course_id)

    result = asyncio.run(run())
    if not result.success:
        _fail(result.error or "Could not list assignments.")

    table = Table(title=f"Assignments in course {course_id}")
    table.add_column("cmid", justify="right")
    table.add_column("assign id", justify="right")
    table.add_column("Name")
    table.add_column("Visible")
    for a in result.assignments:
        table.add_row(str(a.cmid), str(a.instance_id), a.name, "yes" if a.visible else "no")
    console.print(table)


@app.command("students")
def students(
    course_id: int = typer.Argument(..., help="Moodle course id."),
    config: Optional[Path] = ConfigOption,
):
    """List the students of a course."""
    settings = _load(config)

    async def run():
        async with MoodleGateway(settings.moodle) as gateway:
            return await list_course_students(gateway, course_id)

    result = asyncio.run(run())
    if not result.success:
        _fail(result.error or "Could not list students.")

    table = Table(title=f"Students in course {course_id}")
    table.add_column("id", justify="right")
    table.add_column("Last name")
    table.add_column("First name")
    table.add_column("Email")
    for s in result.students:
        table.add_row(str(s.id), s.last_name, s.first_name, s.email or "")
    console.print(table)


@app.command("student-files")
def student_files(
    user_id: int = typer.Argument(..., help="Moodle user id of the student."),
    course_id: int = typer.Option(..., "--course", help="Course holding the assignments."),
    cmids: Optional[list[int]] = typer.Option(
        None, "--assignment", "-a", help="Course module id to include (repeatable, default all)."
    ),
    config: Optional[Path] = ConfigOption,
):
    """Show a student's submitted files across assignments of a course."""
    settings = _load(config)

    async def run():
        async with MoodleGateway(settings.moodle) as gateway:
            listing = await list_course_assignments(gateway, course_id)
            if not listing.success:
                return listing.error, None

            selected = listing.assignments
            if cmids:
                by_cmid = {a.cmid: a for a in listing.assignments}
                missing = [c for c in cmids if c not in by_cmid]
                if missing:
                    return f"Unknown assignment cmid(s): {', '.join(map(str, missing))}", None
                selected = [by_cmid[c] for c in cmids]

            if not selected:
                return "The course has no assignments.", None

            result = await get_student_files(
                gateway, user_id, selected, concurrency_limit=settings.concurrency_limit
            )
            return result.error, result.data

    error, data = asyncio.run(run())
    if data is None:
        _fail(error or "Could not retrieve files.")

    name = f"{data.first_name} {data.last_name}".strip() or f"user {data.user_id}"
    console.print(f"[bold]{name}[/bold] - status: {data.status.value}")

    table = Table()
    table.add_column("Assignment")
    table.add_column("File")
    table.add_column("Size", justify="right")
    table.add_column("Type")
    for f in data.files:
        table.add_row(f.assignment_name, f"{f.filepath}{f.filename}", format_file_size(f.filesize), f.mimetype)
    console.print(table)


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Bind port."),
    config: Optional[Path] = ConfigOption,
):
    """Run the HTTP API."""
    import uvicorn

    from .web.app import create_app

    settings = _load(config)
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
