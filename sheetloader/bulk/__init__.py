"""
Bulk API 2.0 access: authentication, job client, CSV codec and result correlation
"""
from sheetloader.bulk.auth import ClientCredentialsTokenProvider, StaticTokenProvider, TokenProvider
from sheetloader.bulk.client import BulkJobClient, JobInfo, JobKind, JobState
from sheetloader.bulk.correlation import CorrelatedResult, IngestOutcome, RowCorrelator
from sheetloader.bulk.csv_codec import generate_csv, parse_csv
from sheetloader.bulk.ingest import ImportSummary, build_payload, import_dataset

__all__ = [
    'TokenProvider',
    'StaticTokenProvider',
    'ClientCredentialsTokenProvider',
    'BulkJobClient',
    'JobInfo',
    'JobKind',
    'JobState',
    'IngestOutcome',
    'CorrelatedResult',
    'RowCorrelator',
    'generate_csv',
    'parse_csv',
    'ImportSummary',
    'build_payload',
    'import_dataset',
]
