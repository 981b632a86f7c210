"""
Excel source adapter for reading every worksheet of a workbook
"""
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

import pandas as pd

from sheetloader.adapters.base import SourceAdapter
from sheetloader.common.exceptions import ReadError
from sheetloader.common.models import Dataset


def cell_text(value: Any) -> str:
    """Render one spreadsheet cell as the string stored in a dataset"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class ExcelSource(SourceAdapter):
    """
    Source adapter for Excel workbooks

    Every worksheet becomes one dataset named after the sheet. Without
    ``include_field_names`` the first row is both display labels and column
    keys; with it, row 1 holds the display labels and row 2 the column keys.
    Data ends at the first fully empty row, and worksheets without any data
    row are skipped.
    """

    def __init__(self, file_path: str, include_field_names: bool = False, **kwargs):
        """
        Initialize Excel source

        Args:
            file_path: Path to .xlsx file
            include_field_names: Whether a display-label row precedes the key row
            **kwargs: Additional pandas read_excel parameters
        """
        config = {
            'file_path': file_path,
            'include_field_names': include_field_names,
            **kwargs
        }
        super().__init__(config)

        self.file_path = Path(file_path)
        self.include_field_names = include_field_names
        self.pandas_kwargs = kwargs

    def connect(self) -> None:
        """Establish connection (validate file exists)"""
        if not self.file_path.exists():
            raise ReadError(f"Excel file not found: {self.file_path}")

        if not self.file_path.is_file():
            raise ReadError(f"Path is not a file: {self.file_path}")

        self._connected = True
        self.logger.info(f"Connected to Excel file: {self.file_path}")

    def read(self) -> List[Dataset]:
        """
        Read all worksheets

        Raises:
            ReadError: If the workbook cannot be opened
        """
        if not self._connected:
            raise ReadError("Not connected. Call connect() first.")

        try:
            sheets = pd.read_excel(
                self.file_path,
                sheet_name=None,
                header=None,
                dtype=object,
                engine="openpyxl",
                **self.pandas_kwargs
            )
        except Exception as e:
            raise ReadError(f"Error reading Excel file {self.file_path}: {e}")

        datasets = []
        for sheet_name, df in sheets.items():
            dataset = self._to_dataset(str(sheet_name), df.values.tolist())
            if dataset is not None:
                datasets.append(dataset)

        self.logger.info(f"Read {len(datasets)} sheet(s) from {self.file_path}")
        return datasets

    def _to_dataset(self, name: str, cells: List[List[Any]]) -> Optional[Dataset]:
        header_rows = 2 if self.include_field_names else 1
        if len(cells) <= header_rows:
            self.logger.warning(f"Sheet '{name}' has no data rows and will be skipped")
            return None

        labels = self._header(cells[0])
        keys = self._header(cells[1]) if self.include_field_names else list(labels)

        rows = []
        for raw in cells[header_rows:]:
            row = [cell_text(value) for value in raw]
            if not any(row):
                break
            rows.append(row)

        if not rows:
            self.logger.warning(f"Sheet '{name}' has no data rows and will be skipped")
            return None

        self.logger.debug(f"Sheet '{name}': {len(keys)} columns, {len(rows)} rows")
        return Dataset(name=name, display_labels=labels, column_keys=keys, rows=rows)

    @staticmethod
    def _header(raw: List[Any]) -> List[str]:
        return [cell_text(value) or f"Column_{i + 1}" for i, value in enumerate(raw)]

    def close(self) -> None:
        """Close and cleanup"""
        self._connected = False
        self.logger.debug("Excel source closed")
