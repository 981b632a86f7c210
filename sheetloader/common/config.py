"""
Configuration management for sheetloader

A pipeline configuration file (YAML, or JSON since YAML is a superset)
describes the run policy, the remote connection and the ordered actions.
Environment variables (optionally from a .env file) override scalar values.
"""
import os
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from sheetloader.common.exceptions import ConfigurationError
from sheetloader.common.models import (
    Action,
    ColumnMapping,
    ConnectionSettings,
    CopySheetStage,
    ExportStage,
    FieldTransform,
    ImportOperation,
    ImportStage,
    PipelineConfig,
    PlaceholderMissPolicy,
    RunPolicy,
    TransformStage,
)


class Config:
    """Configuration manager"""

    def __init__(self, config_file: Optional[str] = None, env_file: Optional[str] = None):
        """
        Initialize configuration

        Args:
            config_file: Path to YAML/JSON configuration file
            env_file: Path to .env file
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()  # Load from .env in current directory

        self._config: Dict[str, Any] = {}
        if config_file:
            self._load_yaml(config_file)

    def _load_yaml(self, config_file: str) -> None:
        """Load configuration from YAML file"""
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {config_file}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError(f"Config file must contain a mapping: {config_file}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value

        Supports dot notation for nested values (e.g., 'run.poll_interval').
        Checks environment variables first (RUN_POLL_INTERVAL), then the file.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        env_key = key.upper().replace('.', '_')
        env_value = os.getenv(env_key)
        if env_value is not None:
            return env_value

        value = self._config
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_float(self, key: str, default: float = 0.0) -> float:
        """Get float configuration value"""
        value = self.get(key, default)
        try:
            return float(value)
        except (ValueError, TypeError):
            raise ConfigurationError(f"'{key}' must be a number, got {value!r}")

    def get_bool(self, key: str, default: bool = False) -> bool:
        """Get boolean configuration value"""
        value = self.get(key, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ('true', '1', 'yes', 'on')
        return default

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.get(key, default)
        return None if value is None else str(value)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration as dictionary"""
        return self._config.copy()


def load_pipeline_config(config_file: str, env_file: Optional[str] = None) -> PipelineConfig:
    """
    Read a pipeline configuration file

    Args:
        config_file: Path to YAML/JSON file
        env_file: Optional .env file with SF_* credentials and overrides

    Returns:
        PipelineConfig with policy, connection and actions

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    config = Config(config_file, env_file)
    return PipelineConfig(
        policy=parse_run_policy(config),
        actions=parse_actions(config.get('actions', [])),
        connection=ConnectionSettings(
            instance_url=os.getenv('SF_INSTANCE_URL') or config.get_str('connection.instance_url'),
            client_id=os.getenv('SF_CLIENT_ID') or config.get_str('connection.client_id'),
            client_secret=os.getenv('SF_CLIENT_SECRET') or config.get_str('connection.client_secret'),
        )
    )


def parse_run_policy(config: Config) -> RunPolicy:
    defaults = RunPolicy()
    miss_policy = config.get_str('run.placeholder_miss_policy', defaults.placeholder_miss_policy.value)
    try:
        placeholder_miss_policy = PlaceholderMissPolicy(miss_policy.lower())
    except ValueError:
        raise ConfigurationError(
            f"Invalid placeholder_miss_policy: {miss_policy}. Must be one of: 'keep', 'empty'"
        )

    policy = RunPolicy(
        stop_on_error=config.get_bool('run.stop_on_error', defaults.stop_on_error),
        rollback_on_error=config.get_bool('run.rollback_on_error', defaults.rollback_on_error),
        poll_interval=config.get_float('run.poll_interval', defaults.poll_interval),
        max_wait=config.get_float('run.max_wait', defaults.max_wait),
        api_version=config.get_str('run.api_version', defaults.api_version).lstrip('v'),
        placeholder_miss_policy=placeholder_miss_policy
    )

    if policy.poll_interval <= 0:
        raise ConfigurationError("run.poll_interval must be positive")
    if policy.max_wait <= 0:
        raise ConfigurationError("run.max_wait must be positive")

    return policy


def parse_actions(actions_data: Any) -> List[Action]:
    if not isinstance(actions_data, list):
        raise ConfigurationError("'actions' must be a list")
    return [_parse_action(i, data) for i, data in enumerate(actions_data)]


def _parse_action(position: int, data: Any) -> Action:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Action #{position + 1} must be a mapping")

    name = data.get('name')
    input_sheet = data.get('input_sheet') or data.get('sheet')
    if not name:
        raise ConfigurationError(f"Action #{position + 1} has no name")
    if not input_sheet:
        raise ConfigurationError(f"Action '{name}' has no input_sheet")

    try:
        wait_before_start = float(data.get('wait_before_start', 0) or 0)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Action '{name}': wait_before_start must be a number")

    return Action(
        name=str(name),
        input_sheet=str(input_sheet),
        output_sheet=data.get('output_sheet'),
        wait_before_start=wait_before_start,
        copy=_parse_copy(name, data.get('copy')),
        export=_parse_export(name, data.get('export')),
        transform=_parse_transform(name, data.get('transform')),
        import_=_parse_import(name, data.get('import'))
    )


def _parse_copy(name: str, data: Any) -> Optional[CopySheetStage]:
    if data is None:
        return None
    columns = data.get('columns') if isinstance(data, dict) else None
    if not isinstance(columns, list) or not columns:
        raise ConfigurationError(f"Action '{name}': copy.columns must be a non-empty list")

    mappings = []
    for column in columns:
        if not isinstance(column, dict) or not column.get('source'):
            raise ConfigurationError(f"Action '{name}': each copy column needs a 'source'")
        mappings.append(ColumnMapping(
            source_column=str(column['source']),
            target_column=str(column.get('target') or column['source'])
        ))
    return CopySheetStage(columns=mappings)


def _parse_export(name: str, data: Any) -> Optional[ExportStage]:
    if data is None:
        return None
    if not isinstance(data, dict) or not data.get('query'):
        raise ConfigurationError(f"Action '{name}': export needs a 'query'")
    return ExportStage(query=str(data['query']), match_column=data.get('match_column'))


def _parse_transform(name: str, data: Any) -> Optional[TransformStage]:
    if data is None:
        return None
    fields = data.get('fields') if isinstance(data, dict) else None
    if not isinstance(fields, list):
        raise ConfigurationError(f"Action '{name}': transform.fields must be a list")

    transforms = []
    for field_data in fields:
        if not isinstance(field_data, dict) or not field_data.get('column'):
            raise ConfigurationError(f"Action '{name}': each transform field needs a 'column'")
        expression = field_data.get('expression')
        # Blank expressions are allowed and skipped at run time
        transforms.append(FieldTransform(
            target_column=str(field_data['column']),
            expression='' if expression is None else str(expression)
        ))
    return TransformStage(fields=transforms)


def _parse_import(name: str, data: Any) -> Optional[ImportStage]:
    if data is None:
        return None
    if not isinstance(data, dict) or not data.get('object'):
        raise ConfigurationError(f"Action '{name}': import needs an 'object'")

    operation = str(data.get('operation', 'insert')).lower()
    try:
        import_operation = ImportOperation(operation)
    except ValueError:
        raise ConfigurationError(
            f"Action '{name}': invalid import operation '{operation}'. "
            f"Must be one of: 'insert', 'update', 'upsert', 'delete'"
        )

    unique_field = data.get('unique_field')
    if import_operation == ImportOperation.UPSERT and not unique_field:
        raise ConfigurationError(f"Action '{name}': upsert requires a 'unique_field'")

    columns = data.get('columns')
    if columns is not None and not isinstance(columns, list):
        raise ConfigurationError(f"Action '{name}': import.columns must be a list")

    return ImportStage(
        object_name=str(data['object']),
        operation=import_operation,
        unique_field=unique_field,
        columns=[str(c) for c in columns] if columns is not None else None,
        id_column=data.get('id_column')
    )
