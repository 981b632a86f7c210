"""
Reconcile two datasets into one
"""
from typing import Dict, List, Optional

from sheetloader.common.logging import get_logger
from sheetloader.common.models import Dataset

logger = get_logger("merger")


def _row_index(dataset: Dataset, column: int) -> Dict[str, List[str]]:
    """key → first row with that key"""
    index: Dict[str, List[str]] = {}
    for row in dataset.rows:
        index.setdefault(row[column], row)
    return index


def merge_datasets(master: Dataset, secondary: Dataset, match_column: Optional[str] = None) -> Dataset:
    """
    Merge ``secondary`` into a copy of ``master``

    Columns are master's, then secondary's columns master lacks. With a
    match column present on both sides, each master row is filled from the
    secondary row with the same key wherever master's cell is empty, and
    secondary rows with unseen keys are appended in their original order.
    Without one, secondary rows are appended after master rows.

    Args:
        master: Dataset whose values win; the result keeps its name
        secondary: Dataset supplying missing values and extra rows
        match_column: Column key identifying the same record on both sides

    Returns:
        New Dataset; neither input is modified
    """
    keys = list(master.column_keys)
    labels = list(master.display_labels)
    for key, label in zip(secondary.column_keys, secondary.display_labels):
        if key not in keys:
            keys.append(key)
            labels.append(label)

    # Position of every result column in each input, None when absent
    from_master = [master.find_column(key) for key in keys]
    from_secondary = [secondary.find_column(key) for key in keys]

    def project(row: List[str], positions: List[Optional[int]]) -> List[str]:
        return [row[p] if p is not None else "" for p in positions]

    merged = Dataset(name=master.name, display_labels=labels, column_keys=keys)

    if not match_column or not master.has_column(match_column) or not secondary.has_column(match_column):
        logger.info(
            f"No usable match column for '{master.name}' ← '{secondary.name}'; appending rows"
        )
        merged.rows = [project(row, from_master) for row in master.rows]
        merged.rows.extend(project(row, from_secondary) for row in secondary.rows)
        return merged

    master_key = master.column_index(match_column)
    secondary_key = secondary.column_index(match_column)
    secondary_index = _row_index(secondary, secondary_key)

    master_keys = set()
    for row in master.rows:
        key = row[master_key]
        master_keys.add(key)
        values = project(row, from_master)

        other = secondary_index.get(key)
        if other is not None:
            for i, position in enumerate(from_secondary):
                if values[i] == "" and position is not None and other[position] != "":
                    values[i] = other[position]
        merged.rows.append(values)

    appended = 0
    for row in secondary.rows:
        if row[secondary_key] not in master_keys:
            merged.rows.append(project(row, from_secondary))
            appended += 1

    logger.info(
        f"Merged '{secondary.name}' into '{master.name}' on '{match_column}': "
        f"{len(master.rows)} matched/kept, {appended} appended"
    )
    return merged
