"""
CSV source adapter for reading CSV files into datasets
"""
from pathlib import Path
from typing import List, Sequence

import pandas as pd

from sheetloader.adapters.base import SourceAdapter
from sheetloader.common.exceptions import ReadError
from sheetloader.common.models import Dataset


class CSVSource(SourceAdapter):
    """
    Source adapter for one or more CSV files

    Each file becomes one dataset named after the file stem. The header row
    supplies both column keys and display labels; every cell is read as a
    string and empty cells stay empty strings.
    """

    def __init__(
        self,
        file_paths: Sequence[str],
        delimiter: str = ",",
        encoding: str = "utf-8",
        **kwargs
    ):
        """
        Initialize CSV source

        Args:
            file_paths: Paths to CSV files
            delimiter: CSV delimiter (default: ',')
            encoding: File encoding (default: 'utf-8')
            **kwargs: Additional pandas read_csv parameters
        """
        if isinstance(file_paths, (str, Path)):
            file_paths = [file_paths]
        config = {
            'file_paths': [str(p) for p in file_paths],
            'delimiter': delimiter,
            'encoding': encoding,
            **kwargs
        }
        super().__init__(config)

        self.file_paths = [Path(p) for p in file_paths]
        self.delimiter = delimiter
        self.encoding = encoding
        self.pandas_kwargs = kwargs

    def connect(self) -> None:
        """Validate that every file exists"""
        for file_path in self.file_paths:
            if not file_path.exists():
                raise ReadError(f"CSV file not found: {file_path}")
            if not file_path.is_file():
                raise ReadError(f"Path is not a file: {file_path}")

        self._connected = True
        self.logger.info(f"Connected to {len(self.file_paths)} CSV file(s)")

    def read(self) -> List[Dataset]:
        if not self._connected:
            raise ReadError("Not connected. Call connect() first.")
        return [self._read_file(file_path) for file_path in self.file_paths]

    def _read_file(self, file_path: Path) -> Dataset:
        try:
            df = pd.read_csv(
                file_path,
                sep=self.delimiter,
                encoding=self.encoding,
                header=None,
                dtype=str,
                keep_default_na=False,
                **self.pandas_kwargs
            )
        except pd.errors.EmptyDataError:
            self.logger.warning(f"CSV file {file_path} is empty")
            return Dataset(name=file_path.stem, display_labels=[], column_keys=[])
        except Exception as e:
            raise ReadError(f"Error reading CSV file {file_path}: {e}")

        # Header read as data so pandas does not rename duplicates to Name.1
        cells = [["" if pd.isna(value) else str(value) for value in row] for row in df.itertuples(index=False)]
        if not cells:
            self.logger.warning(f"CSV file {file_path} is empty")
            return Dataset(name=file_path.stem, display_labels=[], column_keys=[])
        headers = [name if name else f"Column_{i + 1}" for i, name in enumerate(cells[0])]
        rows = cells[1:]

        duplicates = sorted({name for name in headers if headers.count(name) > 1})
        if duplicates:
            raise ReadError(f"CSV file {file_path} has duplicate column names: {', '.join(duplicates)}")

        self.logger.info(f"Read {len(rows)} rows from {file_path}")
        return Dataset(
            name=file_path.stem,
            display_labels=list(headers),
            column_keys=list(headers),
            rows=rows
        )

    def close(self) -> None:
        """Close and cleanup"""
        self._connected = False
        self.logger.debug("CSV source closed")
