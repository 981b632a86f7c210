"""
Excel destination adapter writing one worksheet per dataset
"""
from pathlib import Path
from typing import Iterable, List

import pandas as pd

from sheetloader.adapters.base import DestinationAdapter
from sheetloader.common.exceptions import WriteError
from sheetloader.common.models import Dataset

# Excel limit on worksheet names
MAX_SHEET_NAME = 31


class ExcelLoader(DestinationAdapter):
    """
    Writes datasets into one workbook

    Each worksheet holds the column keys followed by the rows. With
    ``include_field_names`` a display-label row is written above the keys,
    so the workbook can be read back by ``ExcelSource`` with the same flag.
    """

    def __init__(self, file_path: str, include_field_names: bool = False):
        super().__init__({'file_path': file_path, 'include_field_names': include_field_names})
        self.file_path = Path(file_path)
        self.include_field_names = include_field_names

    def connect(self) -> None:
        """Create the parent directory"""
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(f"Cannot create directory for {self.file_path}: {e}")

        self._connected = True
        self.logger.info(f"Will write Excel workbook to: {self.file_path}")

    def write(self, datasets: Iterable[Dataset]) -> int:
        if not self._connected:
            raise WriteError("Not connected. Call connect() first.")

        datasets = list(datasets)
        if not datasets:
            self.logger.warning("No datasets to write, Excel workbook not created")
            return 0

        sheet_names = self._sheet_names(datasets)

        try:
            with pd.ExcelWriter(self.file_path, engine="openpyxl") as writer:
                for dataset, sheet_name in zip(datasets, sheet_names):
                    self._sheet_frame(dataset).to_excel(
                        writer,
                        sheet_name=sheet_name,
                        header=False,
                        index=False
                    )
        except Exception as e:
            raise WriteError(f"Failed to write Excel workbook {self.file_path}: {e}")

        self.logger.info(f"Wrote {len(datasets)} sheet(s) to {self.file_path}")
        return len(datasets)

    def _sheet_names(self, datasets: List[Dataset]) -> List[str]:
        """Worksheet name per dataset, truncated to the Excel limit"""
        names: List[str] = []
        for dataset in datasets:
            name = dataset.name[:MAX_SHEET_NAME]
            if name.lower() in (n.lower() for n in names):
                raise WriteError(
                    f"Datasets cannot share worksheet name '{name}' in {self.file_path} "
                    f"(names are cut to {MAX_SHEET_NAME} characters)"
                )
            names.append(name)
        return names

    def _sheet_frame(self, dataset: Dataset) -> pd.DataFrame:
        cells: List[List[str]] = []
        if self.include_field_names:
            cells.append(list(dataset.display_labels))
        cells.append(list(dataset.column_keys))
        cells.extend(dataset.rows)
        return pd.DataFrame(cells, dtype=object)

    def close(self) -> None:
        """Close and cleanup"""
        self._connected = False
        self.logger.debug("Excel loader closed")
