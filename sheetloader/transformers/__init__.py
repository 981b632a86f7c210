"""
Dataset transformers: field expressions, merge and column copy
"""
from sheetloader.transformers.base_transformer import Transformer, TransformerStats
from sheetloader.transformers.column_copier import copy_columns
from sheetloader.transformers.expression import CompiledExpression, Placeholder, compile_expression
from sheetloader.transformers.field_transformer import FieldTransformer, build_lookup_index
from sheetloader.transformers.merger import merge_datasets

__all__ = [
    'Transformer',
    'TransformerStats',
    'CompiledExpression',
    'Placeholder',
    'compile_expression',
    'FieldTransformer',
    'build_lookup_index',
    'merge_datasets',
    'copy_columns',
]
