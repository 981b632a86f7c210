"""
Action pipeline orchestrator for sheetloader

Runs configured actions strictly in order against a working set of
datasets. Each action runs its optional stages as Copy, Export, Transform,
Import; a failing stage ends its action. Depending on the run policy the
pipeline then continues, stops, or stops and rolls back the imports that
already ran by deleting the records they created.
"""
import time
from datetime import datetime
from typing import Callable, List, Optional

from sheetloader.bulk.client import BulkJobClient
from sheetloader.common.exceptions import MissingInputError
from sheetloader.common.logging import get_logger
from sheetloader.common.models import (
    Action,
    ActionResult,
    PipelineResult,
    RunPolicy,
    StageResult,
    WorkingSet,
)
from sheetloader.orchestration.pipeline_core import (
    ImportRecord,
    build_rollback_actions,
    run_copy_stage,
    run_export_stage,
    run_import_stage,
    run_transform_stage,
)

# Stages whose missing input is reported as a skip rather than a failure
SKIPPABLE_STAGES = ('transform', 'import')


class ActionPipeline:
    """
    Pipeline orchestrator that sequences actions and owns the error policy

    Example:
        pipeline = ActionPipeline(client=BulkJobClient(provider))
        result = pipeline.run(config.policy, config.actions, working_set)
        print(result.summary())
    """

    def __init__(
        self,
        client: Optional[BulkJobClient] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize pipeline

        Args:
            client: Bulk API client for export and import stages; actions
                that need it fail when it is None
            sleep: Delay function used for ``wait_before_start``
        """
        self.client = client
        self.logger = get_logger("Pipeline")
        self._sleep = sleep

    def run(self, policy: RunPolicy, actions: List[Action], working_set: WorkingSet) -> PipelineResult:
        """
        Execute the actions in order

        Args:
            policy: Stop/rollback flags and placeholder miss policy
            actions: Ordered actions
            working_set: Datasets by name, mutated in place

        Returns:
            PipelineResult naming the failed action, its cause and the
            rollback outcome when the run did not succeed
        """
        result = PipelineResult(success=True, start_time=datetime.now())
        journal: List[ImportRecord] = []

        self.logger.info(f"Starting pipeline execution: {len(actions)} action(s)")

        for action in actions:
            if action.wait_before_start > 0:
                self.logger.info(f"Waiting {action.wait_before_start:.1f}s before '{action.name}'")
                self._sleep(action.wait_before_start)

            action_result = self._run_action(action, policy, working_set, journal)
            result.actions.append(action_result)

            failed = action_result.failed_stage
            if failed is None:
                continue

            reason = f"{failed.stage} stage failed: {failed.error_message}"
            self.logger.error(f"Action '{action.name}' failed: {reason}")
            if result.success:
                result.success = False
                result.failed_action = action.name
                result.failure_reason = reason

            if not policy.stop_on_error:
                self.logger.info("stop_on_error is off, continuing with next action")
                continue

            if policy.rollback_on_error:
                result.rollback_attempted = True
                result.rollback_result = self._rollback(policy, journal, working_set)
            break

        result.end_time = datetime.now()
        result.duration_seconds = (result.end_time - result.start_time).total_seconds()

        if result.success:
            self.logger.info(f"Pipeline completed successfully in {result.duration_seconds:.2f}s")
        else:
            self.logger.error(f"Pipeline finished with errors in {result.duration_seconds:.2f}s")
        return result

    def _run_action(
        self,
        action: Action,
        policy: RunPolicy,
        working_set: WorkingSet,
        journal: List[ImportRecord]
    ) -> ActionResult:
        action_result = ActionResult(action=action.name)
        self.logger.info(f"Action '{action.name}': {action.input_sheet} -> {action.output_sheet}")

        stages = []
        if action.copy is not None:
            stages.append(('copy', lambda: run_copy_stage(action, working_set)))
        if action.export is not None:
            stages.append(('export', lambda: run_export_stage(action, working_set, self.client)))
        if action.transform is not None:
            stages.append(('transform', lambda: run_transform_stage(
                action, working_set, policy.placeholder_miss_policy
            )))
        if action.import_ is not None:
            stages.append(('import', lambda: run_import_stage(
                action, working_set, self.client, journal
            )))

        for stage, func in stages:
            stage_result = self._run_stage(stage, func)
            action_result.stages.append(stage_result)
            if not stage_result.success:
                break

        return action_result

    def _run_stage(self, stage: str, func: Callable[[], int]) -> StageResult:
        """Run one stage function and convert its outcome into a StageResult"""
        start_time = time.time()
        try:
            record_count = func()
            return StageResult(
                stage=stage,
                success=True,
                record_count=record_count,
                duration_seconds=time.time() - start_time
            )

        except MissingInputError as e:
            if stage not in SKIPPABLE_STAGES:
                self.logger.error(f"Stage '{stage}' failed: {e}")
                return StageResult(
                    stage=stage,
                    success=False,
                    duration_seconds=time.time() - start_time,
                    error_type=type(e).__name__,
                    error_message=str(e)
                )
            self.logger.warning(f"Stage '{stage}' skipped: {e}")
            return StageResult(
                stage=stage,
                success=True,
                duration_seconds=time.time() - start_time,
                skipped=True
            )

        except Exception as e:
            self.logger.error(f"Stage '{stage}' failed: {e}")
            return StageResult(
                stage=stage,
                success=False,
                duration_seconds=time.time() - start_time,
                error_type=type(e).__name__,
                error_message=str(e)
            )

    def _rollback(
        self,
        policy: RunPolicy,
        journal: List[ImportRecord],
        working_set: WorkingSet
    ) -> Optional[PipelineResult]:
        rollback_actions = build_rollback_actions(journal)
        if not rollback_actions:
            self.logger.info("Rollback requested but no import wrote records, nothing to roll back")
            return None

        self.logger.warning(f"Rolling back {len(rollback_actions)} import(s)")
        rollback_result = self.run(policy.for_rollback(), rollback_actions, working_set)
        if not rollback_result.success:
            self.logger.error(f"Rollback did not complete: {rollback_result.failure_reason}")
        return rollback_result


def run_pipeline(
    policy: RunPolicy,
    actions: List[Action],
    working_set: WorkingSet,
    client: Optional[BulkJobClient] = None
) -> PipelineResult:
    """Convenience wrapper: run actions with a fresh ActionPipeline"""
    return ActionPipeline(client=client).run(policy, actions, working_set)
