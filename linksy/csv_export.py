from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any
from urllib.parse import quote

Column = tuple[str, Any]

_NEEDS_QUOTING = (",", "\n", "\r", '"')
# leading characters a spreadsheet would evaluate as a formula
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
_HEADER_UNSAFE = re.compile(r'[^\x20-\x7e]|["\\]')


def _quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def escape_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return _quote(json.dumps(value, ensure_ascii=False, separators=(",", ":")))
    text = str(value)
    if isinstance(value, str) and text.startswith(_FORMULA_PREFIXES):
        text = "'" + text
    if any(ch in text for ch in _NEEDS_QUOTING):
        return _quote(text)
    return text


def _cell(row: Mapping[str, Any], accessor: Any) -> Any:
    if callable(accessor):
        return accessor(row)
    return row.get(accessor)


def to_csv(rows: Iterable[Mapping[str, Any]], columns: Sequence[Column]) -> str:
    materialized = list(rows)
    if not materialized:
        return ""
    lines = [",".join(escape_csv_value(header) for header, _ in columns)]
    for row in materialized:
        lines.append(",".join(escape_csv_value(_cell(row, accessor)) for _, accessor in columns))
    return "\n".join(lines)


def export_filename(prefix: str, today: date | None = None) -> str:
    day = today or date.today()
    return f"{prefix}-{day.isoformat()}.csv"


def content_disposition(filename: str) -> str:
    """Attachment header; non-ASCII names get an RFC 5987 ``filename*`` alongside an ASCII fallback."""
    fallback = _HEADER_UNSAFE.sub("_", filename).strip() or "download"
    if fallback == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"
