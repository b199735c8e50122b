from __future__ import annotations

import csv
import io
from collections.abc import Iterator
from dataclasses import dataclass

EXPECTED_HEADERS = ["isikukood", "nimi", "meiliaadress", "telefoninumber", "üksus", "roll", "teostaja"]
ATTRIBUTE_NAMES = ["personal_identification_code", "name", "email", "phone", "department", "role", "is_vendor"]
SEPARATOR = ";"


class IncorrectFormat(ValueError):
    """Header or column count does not match the import template."""


@dataclass(frozen=True)
class CsvRow:
    index: int
    attributes: dict[str, str]


def _normalize_header(h: str) -> str:
    h = (h or "").strip().lower()
    # spreadsheet exports of the template sometimes lose the leading letter
    return "isikukood" if h == "sikukood" else h


def read_rows(file_bytes: bytes) -> Iterator[CsvRow]:
    """
    Reads a ';'-separated user import file.

    Headers are matched case-insensitively against the template:
    Isikukood;Nimi;Meiliaadress;Telefoninumber;Üksus;Roll;Teostaja

    Rows are yielded lazily with a zero-based index; fully empty lines are skipped.
    Raises IncorrectFormat on a header or column-count mismatch.
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.reader(io.StringIO(text), delimiter=SEPARATOR)
    headers = next(reader, None)
    if headers is None or [_normalize_header(h) for h in headers] != EXPECTED_HEADERS:
        raise IncorrectFormat("The file has incorrect headers")

    idx = 0
    for raw in reader:
        if not raw or all((v or "").strip() == "" for v in raw):
            continue
        if len(raw) != len(ATTRIBUTE_NAMES):
            raise IncorrectFormat("Amount of columns doesn't match with expected")
        yield CsvRow(idx, {k: (v or "").strip() for k, v in zip(ATTRIBUTE_NAMES, raw)})
        idx += 1
