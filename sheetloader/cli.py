"""
Command line entry point

    sheetloader --excel-file data.xlsx --conf-file pipeline.yaml
    sheetloader --csv-file accounts.csv --csv-file contacts.csv --conf-file pipeline.yaml

Reads the input sheets, runs the configured actions and writes every
dataset of the working set back out, whether or not the run succeeded, so
record Ids and error messages are never lost.
"""
import argparse
import os
import sys
from typing import List, Optional

from sheetloader.adapters.destinations import CSVLoader, ExcelLoader
from sheetloader.adapters.sources import CSVSource, ExcelSource
from sheetloader.bulk.auth import ClientCredentialsTokenProvider, StaticTokenProvider, TokenProvider
from sheetloader.bulk.client import BulkJobClient
from sheetloader.common.config import load_pipeline_config
from sheetloader.common.exceptions import SheetLoaderError
from sheetloader.common.logging import get_logger, setup_logging
from sheetloader.common.models import ConnectionSettings, PipelineConfig, WorkingSet
from sheetloader.orchestration.pipeline import ActionPipeline

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sheetloader",
        description="Transform spreadsheet data and load it through Bulk API 2.0 jobs"
    )
    inputs = parser.add_mutually_exclusive_group(required=True)
    inputs.add_argument("-e", "--excel-file", help="Excel workbook; every worksheet is one sheet")
    inputs.add_argument("-c", "--csv-file", action="append",
                        help="CSV file named after its stem (repeatable)")
    parser.add_argument("-x", "--conf-file", required=True,
                        help="Pipeline configuration (YAML or JSON)")
    parser.add_argument("-f", "--include-field-names", action="store_true",
                        help="Excel sheets have a display-label row above the field-name row")
    parser.add_argument("-o", "--output-dir", default="output",
                        help="Directory for <sheet>_output.csv files (default: output)")
    parser.add_argument("--output-excel",
                        help="Also write all sheets into this Excel workbook")
    parser.add_argument("--env-file", help=".env file with SF_* credentials")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-format", default="text", choices=["text", "json"],
                        help="Log line format (default: text)")
    parser.add_argument("--log-file", help="Also write logs to this file")
    return parser


def read_working_set(args: argparse.Namespace) -> WorkingSet:
    if args.excel_file:
        source = ExcelSource(args.excel_file, include_field_names=args.include_field_names)
    else:
        source = CSVSource(args.csv_file)

    with source:
        working_set = source.read_working_set()
    logger.info(f"Loaded {len(working_set)} sheet(s): {', '.join(working_set)}")
    return working_set


def needs_remote(config: PipelineConfig) -> bool:
    return any(action.export is not None or action.import_ is not None for action in config.actions)


def build_token_provider(connection: ConnectionSettings) -> TokenProvider:
    access_token = os.getenv("SF_ACCESS_TOKEN")
    if access_token and connection.instance_url:
        logger.info("Using access token from SF_ACCESS_TOKEN")
        return StaticTokenProvider(connection.instance_url, access_token)
    return ClientCredentialsTokenProvider(
        connection.instance_url,
        connection.client_id,
        connection.client_secret
    )


def write_outputs(args: argparse.Namespace, working_set: WorkingSet) -> None:
    with CSVLoader(args.output_dir) as loader:
        loader.write(working_set.values())

    if args.output_excel:
        with ExcelLoader(args.output_excel, include_field_names=args.include_field_names) as loader:
            loader.write(working_set.values())


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, log_file=args.log_file, format_type=args.log_format)

    try:
        config = load_pipeline_config(args.conf_file, args.env_file)
        working_set = read_working_set(args)
    except SheetLoaderError as e:
        logger.error(str(e))
        return 1

    client = None
    try:
        if needs_remote(config):
            client = BulkJobClient.from_policy(build_token_provider(config.connection), config.policy)
        result = ActionPipeline(client=client).run(config.policy, config.actions, working_set)
    except SheetLoaderError as e:
        logger.error(str(e))
        return 1
    finally:
        if client is not None:
            client.close()

    try:
        write_outputs(args, working_set)
    except SheetLoaderError as e:
        logger.error(str(e))
        return 1

    for line in result.summary().splitlines():
        if result.success:
            logger.info(line)
        else:
            logger.error(line)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
