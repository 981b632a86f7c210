"""
CSV payload encoding for the bulk API

Jobs are created with ``lineEnding=LF`` so payloads are written with bare
newlines. Values are quoted only when needed (commas, quotes, newlines).
"""
import csv
import io
from typing import List, Sequence, Tuple

LINE_ENDING = "LF"


def generate_csv(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """
    Serialize a header row and data rows to CSV text

    Args:
        headers: Column keys
        rows: Data rows, each as wide as headers

    Returns:
        CSV text terminated by a newline
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def parse_csv(text: str) -> Tuple[List[str], List[List[str]]]:
    """
    Parse CSV text into a header row and data rows

    Short rows are padded with empty strings to the header width. Blank
    lines are ignored.

    Args:
        text: CSV text (a leading BOM is tolerated)

    Returns:
        (headers, rows)
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    reader = csv.reader(io.StringIO(text, newline=""))
    records = [record for record in reader if record]
    if not records:
        return [], []

    headers = records[0]
    width = len(headers)
    rows = []
    for record in records[1:]:
        if len(record) < width:
            record = record + [""] * (width - len(record))
        rows.append(record[:width])
    return headers, rows
