"""
sheetloader - spreadsheet transformation and Bulk API 2.0 load pipeline
"""
__version__ = "0.1.0"
