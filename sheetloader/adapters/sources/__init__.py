"""
Source adapters for reading spreadsheets into datasets.
"""
from sheetloader.adapters.sources.csv_source import CSVSource
from sheetloader.adapters.sources.excel_source import ExcelSource

__all__ = [
    'CSVSource',
    'ExcelSource',
]
