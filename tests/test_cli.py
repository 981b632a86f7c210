import pandas as pd
import pytest

from sheetloader.cli import build_parser, main


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ("SF_INSTANCE_URL", "SF_CLIENT_ID", "SF_CLIENT_SECRET", "SF_ACCESS_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _inputs(tmp_path, config_text: str):
    accounts = tmp_path / "Accounts.csv"
    accounts.write_text("Code,Name\nA,Acme\nB,Beta\n", encoding="utf-8")
    contacts = tmp_path / "Contacts.csv"
    contacts.write_text("LastName,Account\nSmith,A\nJones,Z\n", encoding="utf-8")
    config = tmp_path / "pipeline.yaml"
    config.write_text(config_text, encoding="utf-8")
    return str(accounts), str(contacts), str(config)


TRANSFORM_ONLY = """
actions:
  - name: link contacts
    input_sheet: Contacts
    transform:
      fields:
        - {column: Account, expression: "${Accounts.Code.Name}"}
"""


def test_transform_only_run_writes_outputs(tmp_path) -> None:
    accounts, contacts, config = _inputs(tmp_path, TRANSFORM_ONLY)
    out_dir = tmp_path / "out"

    code = main([
        "--csv-file", accounts, "--csv-file", contacts,
        "--conf-file", config, "--output-dir", str(out_dir),
        "--output-excel", str(tmp_path / "out.xlsx"),
    ])

    assert code == 0
    df = pd.read_csv(out_dir / "Contacts_output.csv", dtype=str, keep_default_na=False)
    assert df["Account"].tolist() == ["Acme", "Z"]
    assert (out_dir / "Accounts_output.csv").exists()
    assert (tmp_path / "out.xlsx").exists()


def test_failed_run_exits_with_error(tmp_path) -> None:
    accounts, contacts, config = _inputs(tmp_path, """
actions:
  - name: broken
    input_sheet: Contacts
    transform:
      fields:
        - {column: Account, expression: "${Nowhere.Code.Name}"}
""")

    assert main(["-c", accounts, "-c", contacts, "-x", config, "-o", str(tmp_path / "out")]) == 1
    assert (tmp_path / "out" / "Contacts_output.csv").exists()


def test_missing_credentials_exit_with_error(tmp_path) -> None:
    accounts, contacts, config = _inputs(tmp_path, """
actions:
  - name: load
    input_sheet: Accounts
    import: {object: Account}
""")

    assert main(["-c", accounts, "-x", config, "-o", str(tmp_path / "out")]) == 1


def test_bad_configuration_exit_with_error(tmp_path) -> None:
    accounts, contacts, config = _inputs(tmp_path, "actions: 3\n")

    assert main(["-c", accounts, "-x", config]) == 1


def test_input_file_is_required() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--conf-file", "pipeline.yaml"])
