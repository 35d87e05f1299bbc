"""Text conversion helpers for Moodle rich-text fields."""

import re

from bs4 import BeautifulSoup

# Maximum consecutive newlines kept in converted text
MAX_CONSECUTIVE_NEWLINES = 2

# Elements whose end starts a new line of text
BLOCK_TAGS = ["p", "div", "li", "h1", "h2", "h3", "h4", "h5", "h6", "tr"]
LIST_TAGS = ["ul", "ol"]

_EXCESS_NEWLINES = re.compile(r"\n{%d,}" % (MAX_CONSECUTIVE_NEWLINES + 1))


def html_to_text(value: str | None) -> str:
    """Convert an HTML fragment to plain text.

    Paragraphs, list items, headings, table rows and <br> become line
    breaks. Tags are dropped and entities decoded. Whitespace is collapsed
    within each line and runs of blank lines are limited to
    MAX_CONSECUTIVE_NEWLINES.

    Args:
        value: HTML string (None and "" yield "")

    Returns:
        Plain text suitable for CSV cells
    """
    if not value:
        return ""

    soup = BeautifulSoup(value, "html.parser")

    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(LIST_TAGS):
        tag.insert_before("\n")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.append("\n")

    text = soup.get_text()

    lines = [" ".join(line.split()) for line in text.split("\n")]
    text = "\n".join(lines)
    text = _EXCESS_NEWLINES.sub("\n" * MAX_CONSECUTIVE_NEWLINES, text)

    return text.strip()


def format_file_size(num_bytes: int) -> str:
    """Format a byte count as a short human-readable size (e.g. "1.5 MB")."""
    if num_bytes <= 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB"]
    exponent = 0
    while num_bytes >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    size = round(num_bytes / 1024**exponent, 1)
    if size == int(size):
        return f"{int(size)} {units[exponent]}"
    return f"{size} {units[exponent]}"
