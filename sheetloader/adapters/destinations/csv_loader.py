"""
CSV destination adapter for writing datasets to CSV files
"""
from pathlib import Path
from typing import Iterable, List

import pandas as pd

from sheetloader.adapters.base import DestinationAdapter
from sheetloader.common.exceptions import WriteError
from sheetloader.common.models import Dataset

OUTPUT_SUFFIX = "_output.csv"


class CSVLoader(DestinationAdapter):
    """Writes each dataset to ``<output_dir>/<name>_output.csv`` with the column keys as header"""

    def __init__(
        self,
        output_dir: str,
        delimiter: str = ",",
        encoding: str = "utf-8",
        **kwargs
    ):
        """
        Initialize CSV loader

        Args:
            output_dir: Directory for the output files (created if missing)
            delimiter: CSV delimiter (default: ',')
            encoding: File encoding (default: 'utf-8')
            **kwargs: Additional pandas to_csv parameters
        """
        config = {
            'output_dir': output_dir,
            'delimiter': delimiter,
            'encoding': encoding,
            **kwargs
        }
        super().__init__(config)

        self.output_dir = Path(output_dir)
        self.delimiter = delimiter
        self.encoding = encoding
        self.pandas_kwargs = kwargs
        self.written: List[Path] = []

    def connect(self) -> None:
        """Create the output directory"""
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(f"Cannot create output directory {self.output_dir}: {e}")

        self._connected = True
        self.logger.info(f"Will write CSV files to: {self.output_dir}")

    def path_for(self, dataset: Dataset) -> Path:
        return self.output_dir / f"{dataset.name}{OUTPUT_SUFFIX}"

    def write(self, datasets: Iterable[Dataset]) -> int:
        if not self._connected:
            raise WriteError("Not connected. Call connect() first.")

        count = 0
        for dataset in datasets:
            output_file = self.path_for(dataset)
            try:
                df = pd.DataFrame(dataset.rows, columns=dataset.column_keys, dtype=str)
                df.to_csv(
                    output_file,
                    sep=self.delimiter,
                    encoding=self.encoding,
                    index=False,
                    **self.pandas_kwargs
                )
            except Exception as e:
                raise WriteError(f"Failed to write {output_file}: {e}")

            self.written.append(output_file)
            self.logger.info(f"Wrote {len(dataset)} rows of '{dataset.name}' to {output_file}")
            count += 1

        return count

    def close(self) -> None:
        """Close and cleanup"""
        self._connected = False
        self.logger.debug("CSV loader closed")
