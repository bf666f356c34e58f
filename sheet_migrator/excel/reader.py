from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

"""Excel row source.

Row 1 of each sheet is the header, rows 2.. are data. Cells are handed to
the transformer as ``str | None`` so the field rules see the same shape a
spreadsheet API would deliver:

- empty / NaN -> None
- integral floats (Excel stores 5 as 5.0) -> "5"
- dates / timestamps -> "YYYY-MM-DD"

Interior empty rows are kept (they still become records); trailing empty
rows after the last used row are not part of the data.
"""

__all__ = [
    "SourceError",
    "SheetRows",
    "ExcelSource",
    "read_workbook",
    "cell_to_text",
]


class SourceError(Exception):
    """Raised when the workbook or a configured sheet cannot be read."""


@dataclass(frozen=True)
class SheetRows:
    headers: list[str]
    rows: list[list[str | None]]
    first_row_index: int = 2  # spreadsheet row number of rows[0]


def cell_to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (pd.Timestamp, datetime)):
        if pd.isna(value):
            return None
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return str(value)


def read_workbook(
    path: Path, target_sheets: Iterable[str] | None = None, keep_na_strings: list[str] | None = None
) -> dict[str, pd.DataFrame]:
    """Read an Excel file returning raw DataFrames keyed by sheet name.

    Parameters
    ----------
    path: Excel ファイルパス
    target_sheets: 対象シート制限 (None なら全シート)
    keep_na_strings: strings pandas must NOT turn into NaN (e.g. ['NA'])
    """
    import pandas._libs.parsers as parsers

    if keep_na_strings:
        na_values = list(parsers.STR_NA_VALUES - set(keep_na_strings))
        keep_default_na = False
    else:
        na_values = None
        keep_default_na = True

    dfs: dict[str, pd.DataFrame] = {}
    xls = pd.ExcelFile(path)
    for name in xls.sheet_names:
        if target_sheets is not None and str(name) not in target_sheets:
            continue
        # ヘッダなしで生読み (1行目をヘッダとして後で適用)
        df = xls.parse(
            name, header=None, dtype=object, keep_default_na=keep_default_na, na_values=na_values
        )
        dfs[str(name)] = df
    return dfs


def _to_sheet_rows(df: pd.DataFrame, sheet_name: str) -> SheetRows:
    if df.shape[0] < 1:
        raise SourceError(f"sheet '{sheet_name}' has no header row")
    headers = [cell_to_text(v) or "" for v in df.iloc[0].tolist()]
    rows = [[cell_to_text(v) for v in raw] for raw in df.iloc[1:].itertuples(index=False, name=None)]
    while rows and all(c is None or c.strip() == "" for c in rows[-1]):
        rows.pop()
    return SheetRows(headers=headers, rows=rows, first_row_index=2)


class ExcelSource:
    """Row source over one workbook; entity -> sheet mapping from config."""

    def __init__(
        self,
        path: Path,
        sheets: Mapping[str, str],
        keep_na_strings: list[str] | None = None,
    ) -> None:
        self.path = path
        self.sheets = dict(sheets)
        self.keep_na_strings = keep_na_strings
        self._frames: dict[str, pd.DataFrame] | None = None

    def _load(self) -> dict[str, pd.DataFrame]:
        if self._frames is None:
            if not self.path.exists():
                raise SourceError(f"workbook not found: {self.path}")
            try:
                self._frames = read_workbook(
                    self.path, set(self.sheets.values()), keep_na_strings=self.keep_na_strings
                )
            except (OSError, ValueError) as e:
                raise SourceError(f"failed reading {self.path.name}: {e}") from e
        return self._frames

    def fetch_rows(self, entity: str) -> SheetRows:
        sheet_name = self.sheets.get(entity)
        if sheet_name is None:
            raise SourceError(f"no sheet configured for entity '{entity}'")
        frames = self._load()
        if sheet_name not in frames:
            raise SourceError(f"sheet '{sheet_name}' not found in {self.path.name}")
        return _to_sheet_rows(frames[sheet_name], sheet_name)
