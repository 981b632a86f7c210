"""Destination adapters for writing datasets"""

from sheetloader.adapters.destinations.csv_loader import CSVLoader
from sheetloader.adapters.destinations.excel_loader import ExcelLoader

__all__ = [
    'CSVLoader',
    'ExcelLoader',
]
