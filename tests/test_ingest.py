import pytest

from conftest import make_dataset
from sheetloader.bulk.correlation import IngestOutcome, RowCorrelator
from sheetloader.bulk.ingest import apply_results, build_payload, import_dataset
from sheetloader.common.exceptions import CorrelationMissError, DatasetError
from sheetloader.common.models import ImportOperation, ImportStage


def test_insert_scenario_records_id_and_error() -> None:
    dataset = make_dataset("Contacts", ["Id", "Name"], [["", "Ann"], ["", "Bob"]])
    stage = ImportStage("Contact", ImportOperation.INSERT)
    payload = build_payload(dataset, stage)
    outcome = IngestOutcome(
        submitted_columns=payload.columns,
        successful=[["001", "true", "Ann"]],
        failed=[["", "DUPLICATE", "Bob"]]
    )

    summary = apply_results(dataset, payload, outcome, stage.operation)

    assert dataset.column_values("_ImportId") == ["001", ""]
    assert dataset.column_values("_ErrorInsertMessage") == ["", "DUPLICATE"]
    assert (summary.submitted, summary.succeeded, summary.failed) == (2, 1, 1)
    assert summary.record_ids == ["001"]


def test_insert_skips_rows_that_already_have_an_id() -> None:
    dataset = make_dataset("Contacts", ["Id", "Name", "_ImportId"], [
        ["003", "Ann", ""],
        ["", "Bob", "004"],
        ["", "Cid", ""],
    ])

    payload = build_payload(dataset, ImportStage("Contact", ImportOperation.INSERT))

    assert payload.columns == ["Name"]
    assert payload.rows == [["Cid"]]
    assert payload.row_indices == [2]


def test_update_submits_id_first_and_keys_on_it() -> None:
    dataset = make_dataset("Contacts", ["Name", "Id"], [["Ann", "003"], ["Bob", ""]])

    payload = build_payload(dataset, ImportStage("Contact", ImportOperation.UPDATE))

    assert payload.columns == ["Id", "Name"]
    assert payload.rows == [["003", "Ann"]]
    assert payload.key_column == "Id"


def test_upsert_requires_unique_value_and_column() -> None:
    dataset = make_dataset("Accounts", ["Name", "Code__c"], [["Acme", "A"], ["Blank", ""]])
    stage = ImportStage("Account", ImportOperation.UPSERT, unique_field="Code__c")

    payload = build_payload(dataset, stage)

    assert payload.columns == ["Name", "Code__c"]
    assert payload.rows == [["Acme", "A"]]
    assert payload.key_column == "Code__c"

    with pytest.raises(DatasetError):
        build_payload(dataset, ImportStage("Account", ImportOperation.UPSERT, unique_field="Missing__c"))


def test_explicit_columns_are_validated() -> None:
    dataset = make_dataset("Accounts", ["Name", "Notes"], [["Acme", "x"]])

    payload = build_payload(dataset, ImportStage("Account", ImportOperation.INSERT, columns=["Name"]))
    assert payload.columns == ["Name"]

    with pytest.raises(DatasetError):
        build_payload(dataset, ImportStage("Account", ImportOperation.INSERT, columns=["Nope"]))


def test_delete_reads_pinned_id_column() -> None:
    dataset = make_dataset("Contacts", ["Id", "_ImportId"], [["003", ""], ["", "004"]])

    default = build_payload(dataset, ImportStage("Contact", ImportOperation.DELETE))
    pinned = build_payload(dataset, ImportStage("Contact", ImportOperation.DELETE, id_column="_ImportId"))

    assert default.rows == [["003"], ["004"]]
    assert pinned.rows == [["004"]]
    assert pinned.row_indices == [1]


def test_delete_with_absent_pinned_column_has_nothing_to_submit() -> None:
    dataset = make_dataset("Contacts", ["Id"], [["003"]])

    payload = build_payload(dataset, ImportStage("Contact", ImportOperation.DELETE, id_column="_ImportId"))

    assert payload.rows == []


def test_delete_limited_to_record_ids_submits_each_once() -> None:
    dataset = make_dataset("Contacts", ["Name", "_ImportId"], [
        ["Ann", "001OLD"],
        ["Bob", "001NEW"],
        ["Bob again", "001NEW"],
        ["Cid", ""],
    ])
    stage = ImportStage("Contact", ImportOperation.DELETE, id_column="_ImportId", record_ids=["001NEW", "001GONE"])

    payload = build_payload(dataset, stage)

    assert payload.rows == [["001NEW"]]
    assert payload.row_indices == [1]


def test_delete_results_use_delete_error_column() -> None:
    dataset = make_dataset("Contacts", ["Id"], [["003"], ["004"]])
    stage = ImportStage("Contact", ImportOperation.DELETE)
    payload = build_payload(dataset, stage)
    outcome = IngestOutcome(payload.columns, successful=[["003", "false", "003"]],
                            failed=[["004", "ENTITY_IS_DELETED", "004"]])

    apply_results(dataset, payload, outcome, stage.operation)

    assert dataset.column_keys == ["Id", "_ErrorDeleteMessage"]
    assert dataset.column_values("_ErrorDeleteMessage") == ["", "ENTITY_IS_DELETED"]


def test_positional_correlation_consumes_duplicates_in_order() -> None:
    correlator = RowCorrelator(["Name"], [["Ann"], ["Ann"], ["Bob"]], [4, 7, 9])

    assert correlator.mode == "positional"
    assert correlator.match(["x", "true", "Bob"]) == 9
    assert correlator.match(["y", "true", "Ann"]) == 4
    assert correlator.match(["z", "true", "Ann"]) == 7
    with pytest.raises(CorrelationMissError):
        correlator.match(["w", "true", "Ann"])


def test_key_correlation_ignores_result_order() -> None:
    correlator = RowCorrelator(["Id", "Name"], [["003", "Ann"], ["004", "Bob"]], [0, 1], key_column="Id")
    outcome = IngestOutcome(["Id", "Name"], successful=[["004", "false", "004", "Bob"]],
                            failed=[["", "bad", "003", "Ann"], ["", "bad", "999", "Zed"]])

    results = correlator.correlate(outcome)

    assert correlator.mode == "key"
    assert [(r.row_index, r.success) for r in results] == [(1, True), (0, False)]


def test_import_with_no_eligible_rows_creates_no_job(bulk_client, fake_api) -> None:
    dataset = make_dataset("Contacts", ["Id", "Name"], [["003", "Ann"]])

    summary = import_dataset(bulk_client, dataset, ImportStage("Contact", ImportOperation.INSERT))

    assert summary.submitted == 0
    assert fake_api.requests == []


def test_import_dataset_end_to_end(bulk_client, fake_api) -> None:
    dataset = make_dataset("Contacts", ["Id", "LastName"], [["", "Ann"], ["", "Bob"]])
    fake_api.reject = lambda row: "DUPLICATE" if row["LastName"] == "Bob" else None

    summary = import_dataset(bulk_client, dataset, ImportStage("Contact", ImportOperation.INSERT))

    assert (summary.submitted, summary.succeeded, summary.failed) == (2, 1, 1)
    ids = dataset.column_values("_ImportId")
    assert ids[0].startswith("001") and ids[1] == ""
    assert dataset.column_values("_ErrorInsertMessage") == ["", "DUPLICATE"]
