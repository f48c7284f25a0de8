"""
Excel workbooks (.xlsx / .xls) read with pandas.

Every sheet becomes one ``NormalizedTable``: the first row is the header
row and cells go through the same coercion as every other source.
"""

from __future__ import annotations

import asyncio
import logging
import os
import zipfile
from typing import Any, List, Tuple

import pandas as pd

from core.errors import InvalidSourceError
from core.normalizer import NormalizedTable, normalize_table, positional_columns, primitive_field, rows_to_items

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = (".xlsx", ".xls")


def is_excel_file(filename: str, mime_type: str | None = None) -> bool:
    mime = (mime_type or "").lower()
    return (
        "spreadsheet" in mime
        or "excel" in mime
        or os.path.splitext(filename or "")[1].lower() in EXCEL_EXTENSIONS
    )


def _frame_rows(frame: pd.DataFrame) -> List[List[Any]]:
    frame = frame.astype(object).where(pd.notna(frame), None)
    return frame.values.tolist()


def sheet_to_table(raw_rows: List[List[Any]]) -> NormalizedTable:
    if not raw_rows:
        return NormalizedTable(headers=[], rows=[])
    width = max(len(row) for row in raw_rows)
    columns = positional_columns(raw_rows[0], width)
    return normalize_table(rows_to_items(raw_rows[1:]), columns, extractor=primitive_field)


def read_workbook_sync(path: str) -> List[Tuple[str, NormalizedTable]]:
    try:
        sheets = pd.read_excel(path, sheet_name=None, header=None, dtype=object)
    except (ValueError, zipfile.BadZipFile) as exc:
        raise InvalidSourceError(f"Unreadable Excel file: {exc}") from exc
    tables = []
    for name, frame in sheets.items():
        table = sheet_to_table(_frame_rows(frame))
        logger.info("Parsed sheet '%s': %d rows, %d columns", name, table.row_count, table.column_count)
        tables.append((str(name), table))
    return tables


async def read_workbook(path: str) -> List[Tuple[str, NormalizedTable]]:
    return await asyncio.to_thread(read_workbook_sync, path)
