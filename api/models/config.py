"""
Configuration data models for the bank-to-ledger sync.

This module defines the data structures for the YAML configuration file:
bank source, ledger connection, sync window, storage paths and logging.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import yaml

from core.file_validator import FileValidator, FileErrorType


MIN_DAYS_TO_FETCH = 1
MAX_DAYS_TO_FETCH = 90
MIN_MEMO_LIMIT = 20


@dataclass
class BankConfig:
    type: str = "ofx"
    statement_file: Optional[str] = None
    account_ref: str = ""
    currency: str = "EUR"


@dataclass
class LedgerConfig:
    type: str = "ynab"
    base_url: str = "https://api.ynab.com/v1"
    token: str = ""
    budget_id: str = ""
    account_id: str = ""
    timeout_seconds: int = 30


@dataclass
class SyncConfig:
    days_to_fetch: int = 30
    date_tolerance_days: int = 1
    memo_limit: int = 300

    @property
    def ledger_lookup_days(self) -> int:
        """Ledger window must cover the fetch window plus the duplicate date tolerance."""
        return self.days_to_fetch + self.date_tolerance_days


@dataclass
class StorageConfig:
    rules_file: Optional[str] = None
    settings_file: Optional[str] = None


@dataclass
class Config:
    """Main configuration data structure."""
    bank: BankConfig = field(default_factory=BankConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create Config from dictionary data."""
        bank_data = data.get('bank') or {}
        ledger_data = data.get('ledger') or {}
        sync_data = data.get('sync') or {}
        storage_data = data.get('storage') or {}
        logging_data = data.get('logging') or {}

        for name, section in (('bank', bank_data), ('ledger', ledger_data),
                              ('sync', sync_data), ('storage', storage_data),
                              ('logging', logging_data)):
            if not isinstance(section, dict):
                raise ValueError(f"Configuration section '{name}' must be a mapping")

        try:
            sync = SyncConfig(
                days_to_fetch=int(sync_data.get('days_to_fetch', 30)),
                date_tolerance_days=int(sync_data.get('date_tolerance_days', 1)),
                memo_limit=int(sync_data.get('memo_limit', 300))
            )
            timeout = int(ledger_data.get('timeout_seconds', 30))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Configuration contains a non-integer value: {e}")

        config = cls(
            bank=BankConfig(
                type=bank_data.get('type', 'ofx'),
                statement_file=bank_data.get('statement_file'),
                account_ref=str(bank_data.get('account_ref', '') or ''),
                currency=str(bank_data.get('currency', 'EUR')).upper()
            ),
            ledger=LedgerConfig(
                type=ledger_data.get('type', 'ynab'),
                base_url=str(ledger_data.get('base_url', 'https://api.ynab.com/v1')).rstrip('/'),
                token=str(ledger_data.get('token', '') or ''),
                budget_id=str(ledger_data.get('budget_id', '') or ''),
                account_id=str(ledger_data.get('account_id', '') or ''),
                timeout_seconds=timeout
            ),
            sync=sync,
            storage=StorageConfig(
                rules_file=storage_data.get('rules_file'),
                settings_file=storage_data.get('settings_file')
            ),
            log_level=str(logging_data.get('level', 'INFO')).upper()
        )

        errors = validate_config(config)
        if errors:
            raise ValueError("Invalid configuration: " + "; ".join(errors))
        return config


def validate_config(config: Config) -> list:
    """
    Validate configuration values.

    Returns list of validation errors, empty if valid.
    """
    errors = []

    if not MIN_DAYS_TO_FETCH <= config.sync.days_to_fetch <= MAX_DAYS_TO_FETCH:
        errors.append(f"sync.days_to_fetch must be between {MIN_DAYS_TO_FETCH} and {MAX_DAYS_TO_FETCH}")

    if config.sync.date_tolerance_days < 0:
        errors.append("sync.date_tolerance_days must not be negative")

    if config.sync.memo_limit < MIN_MEMO_LIMIT:
        errors.append(f"sync.memo_limit must be at least {MIN_MEMO_LIMIT}")

    if config.ledger.timeout_seconds <= 0:
        errors.append("ledger.timeout_seconds must be positive")

    if config.bank.type != 'ofx':
        errors.append(f"Unsupported bank type: {config.bank.type}")

    if config.ledger.type != 'ynab':
        errors.append(f"Unsupported ledger type: {config.ledger.type}")

    return errors


# Configuration file operations
def load_config_file(file_path: str) -> Config:
    """Load and validate configuration file with comprehensive error handling."""
    content, errors = FileValidator.safe_file_read(file_path)
    if errors:
        error = errors[0]  # Take first error
        if error.error_type == FileErrorType.FILE_NOT_FOUND:
            raise ValueError(f"Configuration file not found: {file_path}")
        elif error.error_type == FileErrorType.PERMISSION_DENIED:
            raise ValueError(f"Configuration file not readable: {file_path} - {error.message}")
        else:
            raise ValueError(f"Configuration file error: {error.message}")

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Configuration file contains invalid YAML: {str(e)}")

    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a YAML dictionary")

    return Config.from_dict(data)


def create_example_config() -> Dict[str, Any]:
    """Create an example configuration structure."""
    return {
        'bank': {
            'type': 'ofx',
            'statement_file': 'statements/checking.ofx',
            'currency': 'EUR'
        },
        'ledger': {
            'type': 'ynab',
            'token': 'your-personal-access-token',
            'budget_id': 'your-budget-id',
            'account_id': 'your-account-id'
        },
        'sync': {
            'days_to_fetch': 30,
            'date_tolerance_days': 1,
            'memo_limit': 300
        },
        'storage': {
            'rules_file': 'rules.yaml',
            'settings_file': 'settings.yaml'
        },
        'logging': {
            'level': 'INFO'
        }
    }
