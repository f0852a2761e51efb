"""DOM parsing for the list page and per-item detail pages."""

from __future__ import annotations

import re
from dataclasses import dataclass

from selectolax.parser import HTMLParser, Node

from ..config import SourceEndpoints
from ..models import PROCEDURES_FIELD, STATUS_FIELD, DetailResult, ListRow, LogEntry, normalize_id

_PAGER_PATTERN = re.compile(r"(\d+)\s*-\s*(\d+)\s*of\s*(\d+)", re.IGNORECASE)
_STEPS_PATTERN = re.compile(r"(\d+)\s*of\s*(\d+)", re.IGNORECASE)
_NO_RECORDS = re.compile(r"No Records Found", re.IGNORECASE)


@dataclass(slots=True)
class GridRead:
    """Rows read from a data grid plus whether the grid looked complete."""

    rows: list[dict[str, str]]
    loaded: bool


def _text(node: Node | None) -> str:
    if node is None:
        return ""
    return node.text(separator=" ", strip=True)


class PageParser:
    """Parse list and detail pages according to the configured endpoints."""

    def __init__(self, endpoints: SourceEndpoints) -> None:
        self.endpoints = endpoints

    # ------------------------------------------------------------------
    def list_is_ready(self, html: str) -> bool:
        return HTMLParser(html).css_first(self.endpoints.row_selector) is not None

    def parse_list(self, html: str) -> list[ListRow]:
        parser = HTMLParser(html)
        rows: list[ListRow] = []
        for node in parser.css(self.endpoints.row_selector):
            values: dict[str, str] = {}
            for name, column in self.endpoints.list_columns.items():
                cell = node.css_first(f'td[data-column="{column}"]')
                if cell is not None:
                    # links and spans carry the visible value when present
                    inner = cell.css_first("a") or cell.css_first("span")
                    values[name] = _text(inner) or _text(cell)
                else:
                    values[name] = ""
            item_id = normalize_id(values.pop(self.endpoints.id_column, ""))
            if not item_id:
                continue
            status = values.pop(STATUS_FIELD, None)
            rows.append(ListRow(id=item_id, fields=values, status=status or None))
        return rows

    # ------------------------------------------------------------------
    def parse_detail(self, item_id: str, html: str) -> DetailResult:
        parser = HTMLParser(html)
        activity = self.read_grid(parser, self.endpoints.activity_grid_selector)
        columns = self.endpoints.activity_columns
        log = [
            LogEntry(
                timestamp=row.get(columns["timestamp"], ""),
                author=row.get(columns["author"], ""),
                kind=row.get(columns["kind"], ""),
                text=row.get(columns["text"], ""),
            )
            for row in activity.rows
        ]
        fields: dict[str, str] = {}
        procedures = self.read_procedures(parser)
        if procedures is not None:
            fields[PROCEDURES_FIELD] = procedures
        return DetailResult(id=item_id, status=self.read_status(parser), activity_log=log, fields=fields)

    def detail_is_complete(self, html: str) -> bool:
        parser = HTMLParser(html)
        if not self.read_status(parser):
            return False
        return self.read_grid(parser, self.endpoints.activity_grid_selector).loaded

    def read_status(self, parser: HTMLParser) -> str:
        for pair in parser.css(".lv-pair"):
            if _text(pair.css_first(".lv-label")) == self.endpoints.status_label:
                return _text(pair.css_first(".lv-value span"))
        return _text(parser.css_first(".lv-value span.lv-value-types-enhanced"))

    def read_grid(self, parser: HTMLParser, selector: str) -> GridRead:
        root = parser.css_first(selector)
        table = root.css_first("table") if root is not None else None
        body = table.css_first("tbody") if table is not None else None
        if body is None:
            return GridRead(rows=[], loaded=False)
        trs = body.css("tr")
        if not trs:
            return GridRead(rows=[], loaded=False)
        first_cell = trs[0].css_first("td")
        if len(trs) == 1 and first_cell is not None and "colspan" in first_cell.attributes:
            if _NO_RECORDS.search(_text(trs[0])):
                return GridRead(rows=[], loaded=True)
        headers = [
            th.attributes.get("data-field") or _text(th) for th in table.css("thead th")
        ]
        rows: list[dict[str, str]] = []
        for tr in trs:
            cells = tr.css("td")
            rows.append(
                {header: _text(cells[idx]) if idx < len(cells) else "" for idx, header in enumerate(headers)}
            )
        pager = _text(root.css_first(".k-pager-info")) if root is not None else ""
        return GridRead(rows=rows, loaded=self._pager_complete(pager))

    def read_procedures(self, parser: HTMLParser) -> str | None:
        root = parser.css_first(self.endpoints.procedures_grid_selector)
        table = root.css_first("table") if root is not None else None
        if table is None:
            return None
        headers = [(th.attributes.get("data-field") or _text(th)).lower() for th in table.css("thead th")]
        if "steps" not in headers:
            return ""
        index = headers.index("steps")
        for tr in table.css("tbody tr"):
            cells = tr.css("td")
            if len(cells) > index:
                match = _STEPS_PATTERN.search(_text(cells[index]))
                if match:
                    return f"{match.group(1)}/{match.group(2)}"
        return ""

    @staticmethod
    def _pager_complete(text: str) -> bool:
        match = _PAGER_PATTERN.search(text or "")
        if not match:
            return True
        start, end, total = (int(group) for group in match.groups())
        return start == 1 and end == total


__all__ = ["GridRead", "PROCEDURES_FIELD", "PageParser"]
