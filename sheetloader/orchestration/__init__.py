"""
Pipeline orchestration module

Provides the ActionPipeline class and the stage functions it runs.
"""
from sheetloader.orchestration.pipeline import ActionPipeline, run_pipeline
from sheetloader.orchestration.pipeline_core import (
    ImportRecord,
    build_rollback_actions,
    run_copy_stage,
    run_export_stage,
    run_import_stage,
    run_transform_stage,
    working_sheet
)

__all__ = [
    'ActionPipeline',
    'run_pipeline',
    'ImportRecord',
    'build_rollback_actions',
    'run_copy_stage',
    'run_export_stage',
    'run_import_stage',
    'run_transform_stage',
    'working_sheet'
]
