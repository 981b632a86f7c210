"""
File adapters that read spreadsheets into datasets and write them back
"""
