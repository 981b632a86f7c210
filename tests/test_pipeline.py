from conftest import make_dataset
from sheetloader.bulk.csv_codec import parse_csv
from sheetloader.common.models import (
    Action,
    ColumnMapping,
    CopySheetStage,
    ExportStage,
    FieldTransform,
    ImportOperation,
    ImportStage,
    RunPolicy,
    TransformStage,
)
from sheetloader.orchestration.pipeline import ActionPipeline
from sheetloader.orchestration.pipeline_core import ImportRecord, build_rollback_actions, working_sheet


def _insert(name: str, sheet: str, object_name: str) -> Action:
    return Action(name=name, input_sheet=sheet, import_=ImportStage(object_name, ImportOperation.INSERT))


def _failing_transform(name: str, sheet: str) -> Action:
    return Action(name=name, input_sheet=sheet, transform=TransformStage([
        FieldTransform("Name", "${Nowhere.Key.Value}")
    ]))


def _working_set():
    return {
        "S1": make_dataset("S1", ["Name"], [["x1"], ["x2"]]),
        "S2": make_dataset("S2", ["Name"], [["y1"]]),
        "S3": make_dataset("S3", ["Name"], [["z1"]]),
    }


def test_rollback_deletes_imports_in_reverse_order(bulk_client, fake_api) -> None:
    working_set = _working_set()
    actions = [_insert("A1", "S1", "X"), _insert("A2", "S2", "Y"), _failing_transform("A3", "S3")]
    policy = RunPolicy(stop_on_error=True, rollback_on_error=True)

    result = ActionPipeline(client=bulk_client).run(policy, actions, working_set)

    assert not result.success
    assert result.failed_action == "A3"
    assert result.failure_reason.startswith("transform stage failed:")
    assert result.rollback_attempted
    assert result.rollback_result.success
    assert [a.action for a in result.rollback_result.actions] == ["rollback:A2", "rollback:A1"]

    jobs = [(job["body"]["object"], job["body"]["operation"]) for job in fake_api.ingest_jobs()]
    assert jobs == [("X", "insert"), ("Y", "insert"), ("Y", "delete"), ("X", "delete")]

    _, deleted_y = parse_csv(fake_api.ingest_jobs()[2]["csv"])
    assert deleted_y == [[i] for i in working_set["S2"].column_values("_ImportId")]
    assert "Rollback succeeded: 2 delete action(s)" in result.summary()


def test_stop_without_rollback_skips_remaining_actions(bulk_client, fake_api) -> None:
    actions = [_failing_transform("A1", "S3"), _insert("A2", "S1", "X")]

    result = ActionPipeline(client=bulk_client).run(RunPolicy(stop_on_error=True), actions, _working_set())

    assert result.failed_action == "A1"
    assert [a.action for a in result.actions] == ["A1"]
    assert not result.rollback_attempted
    assert fake_api.requests == []


def test_continue_on_error_runs_later_actions(bulk_client, fake_api) -> None:
    actions = [_failing_transform("A1", "S3"), _insert("A2", "S1", "X"), _failing_transform("A3", "S3")]

    result = ActionPipeline(client=bulk_client).run(
        RunPolicy(stop_on_error=False, rollback_on_error=True), actions, _working_set()
    )

    assert not result.success
    assert result.failed_action == "A1"
    assert [a.action for a in result.actions] == ["A1", "A2", "A3"]
    assert result.actions[1].success
    assert not result.rollback_attempted
    assert len(fake_api.ingest_jobs()) == 1


def test_rollback_with_nothing_imported(bulk_client) -> None:
    result = ActionPipeline(client=bulk_client).run(
        RunPolicy(stop_on_error=True, rollback_on_error=True), [_failing_transform("A1", "S3")], _working_set()
    )

    assert result.rollback_attempted
    assert result.rollback_result is None
    assert result.summary().splitlines()[1] == "Rollback attempted: nothing to roll back"


def test_partial_import_fails_stage_and_is_rolled_back(bulk_client, fake_api) -> None:
    fake_api.reject = lambda row: "DUPLICATE" if row["Name"] == "x2" else None
    working_set = _working_set()

    result = ActionPipeline(client=bulk_client).run(
        RunPolicy(stop_on_error=True, rollback_on_error=True), [_insert("A1", "S1", "X")], working_set
    )

    assert result.actions[0].failed_stage.error_type == "PartialImportError"
    assert working_set["S1"].column_values("_ErrorInsertMessage") == ["", "DUPLICATE"]
    delete_job = fake_api.ingest_jobs()[1]
    assert delete_job["body"]["operation"] == "delete"
    _, rows = parse_csv(delete_job["csv"])
    assert rows == [[working_set["S1"].column_values("_ImportId")[0]]]


def test_missing_input_skips_transform_and_import(bulk_client, fake_api) -> None:
    action = Action(
        name="A1",
        input_sheet="Absent",
        transform=TransformStage([FieldTransform("Name", "'x'")]),
        import_=ImportStage("X", ImportOperation.INSERT)
    )

    result = ActionPipeline(client=bulk_client).run(RunPolicy(), [action], _working_set())

    assert result.success
    assert [(s.stage, s.skipped) for s in result.actions[0].stages] == [("transform", True), ("import", True)]
    assert fake_api.requests == []


def test_missing_input_fails_copy() -> None:
    action = Action(name="A1", input_sheet="Absent", output_sheet="Out",
                    copy=CopySheetStage([ColumnMapping("Name", "Name")]))

    result = ActionPipeline().run(RunPolicy(), [action], _working_set())

    assert not result.success
    assert result.actions[0].failed_stage.error_type == "MissingInputError"


def test_import_without_client_fails() -> None:
    result = ActionPipeline().run(RunPolicy(), [_insert("A1", "S1", "X")], _working_set())

    assert not result.success
    assert result.actions[0].failed_stage.error_type == "PipelineError"


def test_zero_eligible_rows_is_a_successful_no_op(bulk_client, fake_api) -> None:
    working_set = {"S1": make_dataset("S1", ["Id", "Name"], [["001", "x1"]])}

    result = ActionPipeline(client=bulk_client).run(RunPolicy(), [_insert("A1", "S1", "X")], working_set)

    assert result.success
    assert result.actions[0].stages[0].record_count == 0
    assert fake_api.requests == []


def test_wait_before_start_sleeps_before_action() -> None:
    slept = []
    action = Action(name="A1", input_sheet="S1", wait_before_start=2.5,
                    transform=TransformStage([FieldTransform("Name", "value")]))

    ActionPipeline(sleep=slept.append).run(RunPolicy(), [action], _working_set())

    assert slept == [2.5]


def test_import_into_new_sheet_leaves_source_untouched(bulk_client) -> None:
    working_set = _working_set()
    action = Action(name="A1", input_sheet="S1", output_sheet="S1_loaded",
                    import_=ImportStage("X", ImportOperation.INSERT))

    result = ActionPipeline(client=bulk_client).run(RunPolicy(), [action], working_set)

    assert result.success
    assert working_set["S1"].column_keys == ["Name"]
    assert working_set["S1_loaded"].column_keys == ["Name", "_ImportId", "_ErrorInsertMessage"]


def test_stages_run_copy_export_transform_import(bulk_client, fake_api) -> None:
    query = "SELECT Code__c, Id FROM Account"
    fake_api.query_pages[query] = ["Code__c,Id\nA,001A\nC,001C\n"]
    working_set = {"Accounts": make_dataset("Accounts", ["Code", "Name"], [["A", "Acme"], ["B", "Beta"]])}
    action = Action(
        name="load accounts",
        input_sheet="Accounts",
        output_sheet="AccountLoad",
        import_=ImportStage("Account", ImportOperation.UPDATE, columns=["Name"]),
        transform=TransformStage([FieldTransform("Name", "value + ' Ltd'")]),
        export=ExportStage(query, match_column="Code__c"),
        copy=CopySheetStage([ColumnMapping("Code", "Code__c"), ColumnMapping("Name", "Name")]),
    )

    result = ActionPipeline(client=bulk_client).run(RunPolicy(), [action], working_set)

    assert result.success
    assert [s.stage for s in result.actions[0].stages] == ["copy", "export", "transform", "import"]
    assert working_sheet(action) == "AccountLoad"
    loaded = working_set["AccountLoad"]
    assert loaded.column_keys[:3] == ["Code__c", "Name", "Id"]
    assert [row[:3] for row in loaded.rows] == [
        ["A", "Acme Ltd", "001A"],
        ["B", "Beta Ltd", ""],
        ["C", " Ltd", "001C"],
    ]
    _, submitted = parse_csv(fake_api.ingest_jobs()[0]["csv"])
    assert submitted == [["001A", "Acme Ltd"], ["001C", " Ltd"]]


def test_rollback_leaves_records_from_an_earlier_run(bulk_client, fake_api) -> None:
    working_set = {"S": make_dataset("S", ["Name", "_ImportId"], [["old", "001PREVIOUSRUN"], ["new", ""]])}
    actions = [_insert("A1", "S", "X"), _failing_transform("A2", "S")]

    result = ActionPipeline(client=bulk_client).run(
        RunPolicy(stop_on_error=True, rollback_on_error=True), actions, working_set
    )

    assert result.rollback_result.success
    insert_job, delete_job = fake_api.ingest_jobs()
    _, inserted = parse_csv(insert_job["csv"])
    _, deleted = parse_csv(delete_job["csv"])
    new_id = working_set["S"].column_values("_ImportId")[1]
    assert inserted == [["new"]]
    assert deleted == [[new_id]]
    assert working_set["S"].column_values("_ImportId")[0] == "001PREVIOUSRUN"


def test_rollback_deletes_each_record_once(bulk_client, fake_api) -> None:
    working_set = _working_set()
    actions = [
        _insert("A1", "S1", "X"),
        Action(name="A2", input_sheet="S1", import_=ImportStage("X", ImportOperation.UPDATE)),
        _failing_transform("A3", "S3"),
    ]

    result = ActionPipeline(client=bulk_client).run(
        RunPolicy(stop_on_error=True, rollback_on_error=True), actions, working_set
    )

    assert result.rollback_result.success
    assert [a.action for a in result.rollback_result.actions] == ["rollback:A2"]
    operations = [job["body"]["operation"] for job in fake_api.ingest_jobs()]
    assert operations == ["insert", "update", "delete"]
    _, deleted = parse_csv(fake_api.ingest_jobs()[2]["csv"])
    assert deleted == [[i] for i in working_set["S1"].column_values("_ImportId")]


def test_build_rollback_actions_skips_deletes_and_covered_records() -> None:
    journal = [
        ImportRecord(_insert("A1", "S1", "X"), ["001A", "001B"]),
        ImportRecord(Action(name="A2", input_sheet="S2", import_=ImportStage("Y", ImportOperation.DELETE)), ["001Y"]),
        ImportRecord(Action(name="A3", input_sheet="S1", import_=ImportStage("X", ImportOperation.UPDATE)), ["001B"]),
        ImportRecord(_insert("A4", "S2", "Z"), ["001B"]),
    ]

    rollback = build_rollback_actions(journal)

    assert [a.name for a in rollback] == ["rollback:A4", "rollback:A3", "rollback:A1"]
    assert [a.import_.object_name for a in rollback] == ["Z", "X", "X"]
    assert [a.import_.record_ids for a in rollback] == [["001B"], ["001B"], ["001A"]]
    assert all(a.import_.operation == ImportOperation.DELETE for a in rollback)
    assert rollback[0].import_.id_column == "_ImportId"
    assert rollback[0].transform is None and rollback[0].copy is None and rollback[0].export is None


def test_build_rollback_actions_drops_imports_with_nothing_left() -> None:
    journal = [
        ImportRecord(_insert("A1", "S1", "X"), ["001A"]),
        ImportRecord(Action(name="A2", input_sheet="S1", import_=ImportStage("X", ImportOperation.UPDATE)), ["001A"]),
    ]

    assert [a.name for a in build_rollback_actions(journal)] == ["rollback:A2"]
