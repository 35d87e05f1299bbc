"""CSV rendering of assignment feedback exports (Excel friendly)."""

import csv
import io
from collections.abc import Iterable, Sequence
from datetime import date

from ..actions.feedback_export import StudentFeedbackRow

DELIMITER = ";"
UTF8_BOM = "\ufeff"
FEEDBACK_HEADERS = ["Last name", "First name", "Grade", "Feedback"]


def generate_csv(
    headers: Sequence[str],
    rows: Iterable[Sequence[object]],
    delimiter: str = DELIMITER,
    include_bom: bool = True,
) -> str:
    """
    Render rows as CSV text.

    Values containing the delimiter, quotes or line breaks are quoted and
    inner quotes doubled. None renders as an empty cell. Lines end with
    CRLF and the text starts with a UTF-8 BOM so Excel picks the encoding.

    Args:
        headers: Column names
        rows: Row values
        delimiter: Field separator
        include_bom: Prefix the output with a UTF-8 BOM

    Returns:
        CSV text
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, lineterminator="\r\n")
    writer.writerow(headers)
    writer.writerows(["" if value is None else value for value in row] for row in rows)

    text = buffer.getvalue()
    if text.endswith("\r\n"):
        text = text[:-2]
    return (UTF8_BOM if include_bom else "") + text


def feedback_rows_to_csv(rows: Iterable[StudentFeedbackRow]) -> str:
    """Render export rows with the standard feedback columns."""
    return generate_csv(
        FEEDBACK_HEADERS,
        ([row.last_name, row.first_name, row.grade, row.feedback] for row in rows),
    )


def export_filename(cmid: int, on: date | None = None) -> str:
    """Download name for an export, e.g. assignment-feedback-42-2024-05-01.csv."""
    on = on or date.today()
    return f"assignment-feedback-{cmid}-{on.isoformat()}.csv"
