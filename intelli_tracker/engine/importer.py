"""Read a previously exported, hand-annotated report back into comment maps."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field

from ..models import normalize_id

ID_COLUMNS = ("ID", "Id", "id")
NEW_COMMENT_COLUMNS = ("Comment / last update (new)", "Comment / Last update (new)")
PREVIOUS_COMMENT_COLUMNS = (
    "Comment / last update (previous)",
    "Comment / Last update (previous)",
)


@dataclass(slots=True)
class AnnotationImport:
    """``new_comments`` holds what the user typed; ``comments_latest`` seeds the next run."""

    new_comments: dict[str, str] = field(default_factory=dict)
    comments_latest: dict[str, str] = field(default_factory=dict)


def sniff_delimiter(line: str) -> str:
    """Pick ``,`` or ``;`` by counting occurrences outside quoted sections."""

    in_quotes = False
    semicolons = commas = 0
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes and char == ";":
            semicolons += 1
        elif not in_quotes and char == ",":
            commas += 1
    return "," if commas > semicolons else ";"


def _pick(row: dict[str, str], columns: tuple[str, ...]) -> str:
    for column in columns:
        value = row.get(column)
        if value is not None and value.strip():
            return value
    return ""


def import_annotations(text: str) -> AnnotationImport:
    text = (text or "").lstrip("\ufeff")
    result = AnnotationImport()
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    if not first_line:
        return result
    reader = csv.DictReader(io.StringIO(text, newline=""), delimiter=sniff_delimiter(first_line))
    if reader.fieldnames:
        reader.fieldnames = [name.replace("\ufeff", "").strip() for name in reader.fieldnames]
    for row in reader:
        item_id = normalize_id(_pick(row, ID_COLUMNS))
        if not item_id:
            continue
        new_comment = _pick(row, NEW_COMMENT_COLUMNS).strip()
        previous = _pick(row, PREVIOUS_COMMENT_COLUMNS).strip()
        result.new_comments[item_id] = new_comment
        result.comments_latest[item_id] = new_comment or previous or ""
    return result


__all__ = ["AnnotationImport", "import_annotations", "sniff_delimiter"]
