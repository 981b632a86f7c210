"""
Per-field expression transformer

Each configured field expression is compiled once, its placeholders are
turned into hash indexes once, and then every row is rewritten from its
current cell value.
"""
from typing import Dict, List, Optional, Tuple

from sheetloader.common.exceptions import InvalidExpressionError
from sheetloader.common.models import (
    Dataset,
    FieldTransform,
    PlaceholderMissPolicy,
    WorkingSet,
)
from sheetloader.transformers.base_transformer import Transformer
from sheetloader.transformers.expression import CompiledExpression, Placeholder, compile_expression

LookupIndex = Dict[str, str]


def build_lookup_index(dataset: Dataset, key_column: str, value_column: str) -> LookupIndex:
    """
    Map each key_column value to the value_column value of its first row

    Raises:
        DatasetError: If either column is missing
    """
    key_index = dataset.column_index(key_column)
    value_index = dataset.column_index(value_column)
    index: LookupIndex = {}
    for row in dataset.rows:
        index.setdefault(row[key_index], row[value_index])
    return index


class FieldTransformer(Transformer):
    """
    Apply ``{target_column, expression}`` rules to a dataset

    A missing target column is appended (empty in every row) before its
    expression runs. When a placeholder key is not found the cell keeps its
    original value (``PlaceholderMissPolicy.KEEP``) or is blanked
    (``PlaceholderMissPolicy.EMPTY``).
    """

    def __init__(
        self,
        fields: List[FieldTransform],
        miss_policy: PlaceholderMissPolicy = PlaceholderMissPolicy.KEEP
    ):
        super().__init__({'fields': fields, 'miss_policy': miss_policy.value})
        self.fields = fields
        self.miss_policy = miss_policy

    def compile(self) -> List[Tuple[FieldTransform, CompiledExpression]]:
        """
        Compile every non-blank expression, in configured order

        Raises:
            InvalidExpressionError: On the first malformed expression
        """
        compiled = []
        for field in self.fields:
            if not field.expression or not field.expression.strip():
                self.logger.debug(f"No expression for '{field.target_column}', skipping")
                continue
            try:
                compiled.append((field, compile_expression(field.expression)))
            except InvalidExpressionError as e:
                raise InvalidExpressionError(f"Field '{field.target_column}': {e}") from e
        return compiled

    def transform(self, dataset: Dataset, working_set: WorkingSet) -> Dataset:
        """
        Rewrite the configured columns of ``dataset`` in place

        Raises:
            InvalidExpressionError: On a malformed expression, a placeholder
                that names an unknown sheet or column, or an evaluation error
        """
        self.reset_stats()
        indexes: Dict[Placeholder, LookupIndex] = {}

        for field, expression in self.compile():
            for placeholder in expression.placeholders:
                if placeholder not in indexes:
                    indexes[placeholder] = self._index_for(placeholder, working_set)

            if not dataset.has_column(field.target_column):
                self.stats.columns_created += 1
                self.logger.info(f"Adding column '{field.target_column}' to '{dataset.name}'")
            column = dataset.ensure_column(field.target_column)

            self._apply(dataset, column, field, expression, indexes)

        self.logger.info(
            f"Transformed '{dataset.name}': {self.stats.cells_modified} cell(s) changed, "
            f"{self.stats.lookup_misses} lookup miss(es)"
        )
        return dataset

    def _index_for(self, placeholder: Placeholder, working_set: WorkingSet) -> LookupIndex:
        source = working_set.get(placeholder.sheet)
        if source is None:
            raise InvalidExpressionError(f"{placeholder}: sheet '{placeholder.sheet}' not found")
        for column in (placeholder.key_column, placeholder.value_column):
            if not source.has_column(column):
                raise InvalidExpressionError(
                    f"{placeholder}: column '{column}' not found in sheet '{placeholder.sheet}'"
                )
        return build_lookup_index(source, placeholder.key_column, placeholder.value_column)

    def _apply(
        self,
        dataset: Dataset,
        column: int,
        field: FieldTransform,
        expression: CompiledExpression,
        indexes: Dict[Placeholder, LookupIndex]
    ) -> None:
        for row in dataset.rows:
            original = row[column]
            resolved = self._resolve(expression, original, indexes)
            self.stats.rows_processed += 1

            if resolved is None:
                self.stats.lookup_misses += 1
                if self.miss_policy == PlaceholderMissPolicy.EMPTY:
                    row[column] = ""
                continue

            try:
                result = expression.evaluate(original, resolved)
            except InvalidExpressionError as e:
                raise InvalidExpressionError(
                    f"Field '{field.target_column}' in '{dataset.name}', value {original!r}: {e}"
                ) from e

            if result != original:
                self.stats.cells_modified += 1
            row[column] = result

    @staticmethod
    def _resolve(
        expression: CompiledExpression,
        value: str,
        indexes: Dict[Placeholder, LookupIndex]
    ) -> Optional[Dict[Placeholder, str]]:
        """Placeholder values for one cell, or None on the first miss"""
        resolved = {}
        for placeholder in expression.placeholders:
            found = indexes[placeholder].get(value)
            if found is None:
                return None
            resolved[placeholder] = found
        return resolved
