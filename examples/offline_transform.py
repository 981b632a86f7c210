"""
Offline transformation example

Runs copy and transform actions on in-memory sheets, with no remote org:
- Copy: project the raw contact sheet onto Contact field names
- Transform: resolve account codes to names through another sheet
- Load: write every sheet to output/<sheet>_output.csv
"""
from pathlib import Path

from sheetloader.adapters.destinations import CSVLoader
from sheetloader.common.logging import setup_logging
from sheetloader.common.models import (
    Action,
    ColumnMapping,
    CopySheetStage,
    Dataset,
    FieldTransform,
    RunPolicy,
    TransformStage,
)
from sheetloader.orchestration.pipeline import ActionPipeline


def main():
    """Run the offline pipeline"""

    logger = setup_logging(level="INFO")
    logger.info("=" * 60)
    logger.info("Starting offline transformation pipeline")
    logger.info("=" * 60)

    working_set = {
        "Accounts": Dataset(
            name="Accounts",
            display_labels=["Account Code", "Account Name"],
            column_keys=["Code", "Name"],
            rows=[["A", "Acme"], ["B", "Beta Corp"]]
        ),
        "ContactsRaw": Dataset(
            name="ContactsRaw",
            display_labels=["Last Name", "Account Code", "Email"],
            column_keys=["Last Name", "Account", "Email"],
            rows=[["Smith", "A", "smith@example.com"], ["Jones", "Q", ""]]
        ),
    }

    actions = [
        Action(
            name="prepare contacts",
            input_sheet="ContactsRaw",
            output_sheet="Contacts",
            copy=CopySheetStage([
                ColumnMapping("Last Name", "LastName"),
                ColumnMapping("Account", "AccountName"),
                ColumnMapping("Email", "Email"),
            ]),
            transform=TransformStage([
                FieldTransform("AccountName", "${Accounts.Code.Name}"),
                FieldTransform("Email", "value == '' ? 'unknown@example.com' : value"),
                FieldTransform("Description", "'Imported contact'"),
            ])
        ),
    ]

    result = ActionPipeline().run(RunPolicy(), actions, working_set)
    for line in result.summary().splitlines():
        logger.info(line)

    output_dir = Path(__file__).parent.parent / "output"
    with CSVLoader(str(output_dir)) as loader:
        loader.write(working_set.values())

    logger.info(f"Output written to {output_dir}")


if __name__ == "__main__":
    main()
