"""Structural HTML scanning for switches that only expose a web UI.

The scan is deliberately lenient: pages served by embedded switches are often
malformed, so a page that cannot be understood produces empty results rather
than an exception. Callers treat "nothing found" as a normal outcome.
"""
import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Optional

logger = logging.getLogger(__name__)

_WS = re.compile(r"\s+")


@dataclass
class HTMLForm:
    """A <form> and the inputs found inside it."""
    action: str = ""
    method: str = "get"
    inputs: list[dict] = field(default_factory=list)

    def hidden_fields(self) -> dict[str, str]:
        """Hidden inputs that have both a name and a value, copied verbatim."""
        fields = {}
        for inp in self.inputs:
            if inp.get("type") == "hidden" and inp.get("name") and inp.get("value"):
                fields[inp["name"]] = inp["value"]
        return fields

    @property
    def has_file_input(self) -> bool:
        return any(inp.get("type") == "file" for inp in self.inputs)


@dataclass
class ScannedPage:
    """Everything the scanner could recover from one page."""
    title: str = ""
    tables: list[list[list[str]]] = field(default_factory=list)
    forms: list[HTMLForm] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    classes: set[str] = field(default_factory=set)
    has_frames: bool = False

    def has_class(self, name: str) -> bool:
        return name in self.classes

    @property
    def has_file_input(self) -> bool:
        return any(form.has_file_input for form in self.forms)


class _PageScanner(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.page = ScannedPage()
        self._in_title = False
        self._title_parts: list[str] = []
        # Stack of open tables; each is a list of rows
        self._tables: list[list[list[str]]] = []
        self._row: Optional[list[str]] = None
        self._cell: Optional[list[str]] = None
        self._form: Optional[HTMLForm] = None

    def handle_starttag(self, tag, attrs):
        attr = {k: (v or "") for k, v in attrs}
        for cls in attr.get("class", "").split():
            self.page.classes.add(cls)

        if tag == "title":
            self._in_title = True
        elif tag in ("frame", "frameset", "iframe"):
            self.page.has_frames = True
        elif tag == "table":
            self._close_row()
            self._tables.append([])
        elif tag == "tr":
            self._close_row()
            self._row = []
        elif tag in ("td", "th"):
            self._close_cell()
            if self._row is None and self._tables:
                self._row = []
            self._cell = []
        elif tag == "a" and attr.get("href"):
            self.page.links.append(attr["href"])
        elif tag == "form":
            self._form = HTMLForm(
                action=attr.get("action", ""),
                method=attr.get("method", "get").lower(),
            )
            self.page.forms.append(self._form)
        elif tag in ("input", "select", "textarea"):
            entry = {
                "name": attr.get("name", ""),
                "type": attr.get("type", "text" if tag == "input" else tag).lower(),
                "value": attr.get("value", ""),
            }
            if self._form is None:
                # Inputs outside any form still count for detection
                self._form = HTMLForm()
                self.page.forms.append(self._form)
            self._form.inputs.append(entry)

    def handle_endtag(self, tag):
        if tag == "title":
            self._in_title = False
        elif tag in ("td", "th"):
            self._close_cell()
        elif tag == "tr":
            self._close_row()
        elif tag == "table":
            self._close_row()
            if self._tables:
                table = self._tables.pop()
                if table:
                    self.page.tables.append(table)
        elif tag == "form":
            self._form = None

    def handle_data(self, data):
        if self._in_title:
            self._title_parts.append(data)
        if self._cell is not None:
            self._cell.append(data)

    def _close_cell(self):
        if self._cell is not None and self._row is not None:
            self._row.append(_WS.sub(" ", "".join(self._cell)).strip())
        self._cell = None

    def _close_row(self):
        self._close_cell()
        if self._row is not None and self._tables:
            if self._row:
                self._tables[-1].append(self._row)
        self._row = None

    def finish(self) -> ScannedPage:
        self._close_row()
        while self._tables:
            table = self._tables.pop()
            if table:
                self.page.tables.append(table)
        self.page.title = _WS.sub(" ", "".join(self._title_parts)).strip()
        return self.page


def scan_html(html: str) -> ScannedPage:
    """Scan a page. Never raises; unparseable input gives a partial page."""
    scanner = _PageScanner()
    try:
        scanner.feed(html or "")
        scanner.close()
    except Exception as e:
        logger.debug(f"HTML scan stopped early: {e}")
    return scanner.finish()


def extract_records(page: ScannedPage, tokens: tuple[str, ...]) -> list[dict[str, str]]:
    """Fold data tables into records keyed by their header row.

    A table counts as a data table when any header cell contains one of
    ``tokens``. Cells under an empty header are dropped.
    """
    records = []
    for table in page.tables:
        if len(table) < 2:
            continue
        headers = [h.lower() for h in table[0]]
        if not any(token in h for h in headers for token in tokens):
            continue
        for row in table[1:]:
            record = {
                headers[i]: cell
                for i, cell in enumerate(row)
                if i < len(headers) and headers[i]
            }
            if record:
                records.append(record)
    return records


def extract_key_values(page: ScannedPage, keywords: tuple[str, ...]) -> dict[str, str]:
    """Two-column "label | value" rows whose label mentions a keyword."""
    info = {}
    for table in page.tables:
        for row in table:
            if len(row) < 2:
                continue
            key = row[0].strip().lower()
            if any(k in key for k in keywords):
                info[key] = row[1].strip()
    if page.title:
        info["page_title"] = page.title
    return info
