"""
Copy selected columns of a dataset into a new dataset
"""
from typing import List

from sheetloader.common.models import ColumnMapping, Dataset


def copy_columns(source: Dataset, columns: List[ColumnMapping], name: str) -> Dataset:
    """
    Build a dataset holding only the mapped columns, in mapping order

    The target name becomes both the display label and the column key, so
    a copy can rename columns to another object's field names.

    Raises:
        DatasetError: If a source column does not exist
    """
    positions = [source.column_index(mapping.source_column) for mapping in columns]
    targets = [mapping.target_column for mapping in columns]
    return Dataset(
        name=name,
        display_labels=list(targets),
        column_keys=list(targets),
        rows=[[row[p] for p in positions] for row in source.rows]
    )
