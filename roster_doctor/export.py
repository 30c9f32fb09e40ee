from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterable, Optional

import openpyxl
import pandas as pd
from openpyxl.comments import Comment
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from roster_doctor.engine import CleaningChange, ValidationError
from roster_doctor.schema import FIELD_DESCRIPTIONS, FIELDS

EXPORT_FORMATS = ("xlsx", "csv", "json")
TEMPLATE_FORMATS = ("xlsx", "csv")

FILL_ERROR = PatternFill("solid", fgColor="FCE4D6")     # soft orange
FILL_CHANGED = PatternFill("solid", fgColor="FFF2CC")   # soft yellow


def _style_sheet(ws, col_widths: list[int], header_color: str) -> None:
    """Bold coloured header, frozen first row, fixed column widths."""
    fill = PatternFill("solid", fgColor=header_color)
    font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(str(v)) + 2)) for v in rows[0]]
    for row in rows[1 : sample + 1]:
        for i, val in enumerate(row):
            if i < len(widths):
                widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def output_columns(rows: Iterable[dict[str, Any]]) -> list[str]:
    """Catalog fields first (in catalog order), then any extra columns in first-seen order."""
    seen: dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    ordered = [name for name in FIELDS if name in seen]
    return ordered + [key for key in seen if key not in FIELDS]


def _cell_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def rows_to_dataframe(rows: list[dict[str, Any]]) -> pd.DataFrame:
    columns = output_columns(rows)
    return pd.DataFrame([[row.get(column) for column in columns] for row in rows], columns=columns)


def write_csv(rows: list[dict[str, Any]], output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    rows_to_dataframe(rows).to_csv(output_path, index=False, encoding="utf-8")


def write_json(rows: list[dict[str, Any]], output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    rows_to_dataframe(rows).to_json(output_path, orient="records", force_ascii=False, indent=2)


def write_workbook(
    rows: list[dict[str, Any]],
    errors: list[ValidationError],
    changes: list[CleaningChange],
    output_path: Path,
) -> None:
    wb = openpyxl.Workbook()
    columns = output_columns(rows)
    error_cells = {(e.row, e.field) for e in errors}
    changed_cells = {(c.row, c.field) for c in changes}

    # ── Sheet 1 - Clean Data ─────────────────────────────────────────────
    ws1 = wb.active
    ws1.title = "Clean Data"
    ws1.append(columns)
    width_rows = [columns]
    for index, row in enumerate(rows):
        values = [_cell_value(row.get(column)) for column in columns]
        ws1.append(values)
        width_rows.append(values)
        for col_index, column in enumerate(columns, start=1):
            if (index, column) in error_cells:
                ws1.cell(ws1.max_row, col_index).fill = FILL_ERROR
            elif (index, column) in changed_cells:
                ws1.cell(ws1.max_row, col_index).fill = FILL_CHANGED
    _style_sheet(ws1, _infer_col_widths(width_rows), "4CAF50")   # green

    # ── Sheet 2 - Errors ─────────────────────────────────────────────────
    ws2 = wb.create_sheet("Errors")
    error_headers = ["row_number", "field", "message", "value"]
    ws2.append(error_headers)
    width_rows = [error_headers]
    for e in sorted(errors, key=lambda item: (item.row, item.field)):
        values = [e.row + 1, e.field, e.message, _cell_value(e.value)]
        ws2.append(values)
        width_rows.append(values)
    _style_sheet(ws2, _infer_col_widths(width_rows), "E53935")   # red

    # ── Sheet 3 - Change Log ─────────────────────────────────────────────
    ws3 = wb.create_sheet("Change Log")
    log_headers = ["row_number", "field", "original_value", "new_value", "change_type", "description"]
    ws3.append(log_headers)
    width_rows = [log_headers]
    for c in sorted(changes, key=lambda item: item.row):
        values = [
            c.row + 1,
            c.field,
            _cell_value(c.original_value),
            _cell_value(c.cleaned_value),
            ", ".join(c.change_type),
            c.description,
        ]
        ws3.append(values)
        width_rows.append(values)
    _style_sheet(ws3, _infer_col_widths(width_rows), "1565C0")   # blue

    for cell in ws2["C"][1:]:
        cell.alignment = Alignment(wrap_text=True, vertical="top")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)


def export_rows(
    rows: list[dict[str, Any]],
    output_path: Path,
    fmt: str,
    errors: Optional[list[ValidationError]] = None,
    changes: Optional[list[CleaningChange]] = None,
) -> Path:
    if fmt == "xlsx":
        write_workbook(rows, errors or [], changes or [], output_path)
    elif fmt == "csv":
        write_csv(rows, output_path)
    elif fmt == "json":
        write_json(rows, output_path)
    else:
        raise ValueError(f"Unsupported export format: {fmt}")
    return output_path


# ── Templates ────────────────────────────────────────────────────────────────

def _template_width(field: str) -> int:
    lowered = field.lower()
    if "email" in lowered:
        return 30
    if "phone" in lowered or "mobile" in lowered:
        return 18
    if "date" in lowered or "id" in lowered:
        return 16
    if lowered in {"country", "language", "city", "gender"}:
        return 14
    return 20


def write_csv_template(output_path: Path, include_descriptions: bool = True) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(FIELDS)
        if include_descriptions:
            writer.writerow([FIELD_DESCRIPTIONS.get(name, "") for name in FIELDS])
    return output_path


def write_xlsx_template(output_path: Path) -> Path:
    """Header row only; each header cell carries its description as a comment."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Users"
    ws.append(list(FIELDS))
    for index, name in enumerate(FIELDS, start=1):
        description = FIELD_DESCRIPTIONS.get(name)
        if description:
            ws.cell(1, index).comment = Comment(description, "Template")
    _style_sheet(ws, [_template_width(name) for name in FIELDS], "1565C0")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)
    return output_path


def write_template(output_path: Path, fmt: str, include_descriptions: bool = True) -> Path:
    if fmt == "csv":
        return write_csv_template(output_path, include_descriptions)
    if fmt == "xlsx":
        return write_xlsx_template(output_path)
    raise ValueError(f"Unsupported template format: {fmt}")
