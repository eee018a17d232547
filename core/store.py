"""
Rule and settings persistence.

Both stores keep their records in memory and, when given a file path, mirror
them to a YAML file after every change. Rules are validated before they are
stored, so the rules engine never sees a pattern that fails to compile.
"""

import logging
import os
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional
import yaml

from api.models.rule import Rule
from api.services.validator import raise_if_invalid, validate_rule
from core.file_validator import FileValidator


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when a store file cannot be read or written."""
    pass


class RuleNotFoundError(Exception):
    """Raised when a rule id is not in the store."""
    pass


def _load_yaml(file_path: str, section: str) -> Any:
    """Read one top-level section of a store file; a missing file is empty."""
    if not os.path.exists(file_path):
        return None

    content, errors = FileValidator.safe_file_read(file_path)
    if errors:
        raise StoreError(f"Cannot read {file_path}: {errors[0].message}")

    try:
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise StoreError(f"{file_path} contains invalid YAML: {e}")

    if not isinstance(data, dict):
        raise StoreError(f"{file_path} must contain a YAML dictionary")
    return data.get(section)


def _dump_yaml(file_path: str, section: str, value: Any) -> None:
    content = yaml.safe_dump({section: value}, sort_keys=False, allow_unicode=True)
    errors = FileValidator.safe_file_write(file_path, content)
    if errors:
        raise StoreError(f"Cannot write {file_path}: {errors[0].message}")


class RuleStore:
    """
    CRUD over categorization rules.

    Rules are kept in insertion order, which is the tie-breaker for rules
    sharing a priority.
    """

    def __init__(self, file_path: Optional[str] = None):
        self.file_path = file_path
        self._rules: Dict[str, Rule] = {}
        self._lock = threading.RLock()
        if file_path:
            self._load()

    def _load(self) -> None:
        entries = _load_yaml(self.file_path, 'rules') or []
        if not isinstance(entries, list):
            raise StoreError(f"'rules' in {self.file_path} must be a list")
        for entry in entries:
            try:
                rule = Rule.from_dict(entry)
            except (KeyError, TypeError, ValueError) as e:
                raise StoreError(f"Invalid rule entry in {self.file_path}: {e}")
            self._rules[rule.id] = rule
        logger.info("Loaded %d rules from %s", len(self._rules), self.file_path)

    def _commit(self, rules: Dict[str, Rule]) -> None:
        """Write the new rule set, then make it current; memory is unchanged when the write fails."""
        if self.file_path:
            _dump_yaml(self.file_path, 'rules', [rule.to_dict() for rule in rules.values()])
        self._rules = rules

    def list(self) -> List[Rule]:
        with self._lock:
            return list(self._rules.values())

    def get(self, rule_id: str) -> Rule:
        with self._lock:
            try:
                return self._rules[rule_id]
            except KeyError:
                raise RuleNotFoundError(f"Rule not found: {rule_id}")

    def create(self, rule: Rule) -> Rule:
        """
        Add a new rule.

        Raises:
            ValidationFailed: If the rule is invalid
            StoreError: If the id is already taken or the file cannot be written
        """
        raise_if_invalid(validate_rule(rule))
        with self._lock:
            if rule.id in self._rules:
                raise StoreError(f"Rule already exists: {rule.id}")
            rules = dict(self._rules)
            rules[rule.id] = rule
            self._commit(rules)
        logger.info("Created rule %s (%s)", rule.id, rule.name)
        return rule

    def update(self, rule: Rule) -> Rule:
        """Replace an existing rule, keeping its position."""
        raise_if_invalid(validate_rule(rule))
        with self._lock:
            if rule.id not in self._rules:
                raise RuleNotFoundError(f"Rule not found: {rule.id}")
            rules = dict(self._rules)
            rules[rule.id] = rule
            self._commit(rules)
        logger.info("Updated rule %s (%s)", rule.id, rule.name)
        return rule

    def delete(self, rule_id: str) -> None:
        with self._lock:
            if rule_id not in self._rules:
                raise RuleNotFoundError(f"Rule not found: {rule_id}")
            rules = dict(self._rules)
            del rules[rule_id]
            self._commit(rules)
        logger.info("Deleted rule %s", rule_id)


class SettingsStore:
    """
    Flat key/value settings.

    Each key carries an ``encrypted`` flag. The flag is metadata for whatever
    reads the file; values are stored as given.
    """

    def __init__(self, file_path: Optional[str] = None):
        self.file_path = file_path
        self._settings: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()
        if file_path:
            self._load()

    def _load(self) -> None:
        entries = _load_yaml(self.file_path, 'settings') or {}
        if not isinstance(entries, dict):
            raise StoreError(f"'settings' in {self.file_path} must be a mapping")
        for key, entry in entries.items():
            if isinstance(entry, dict) and 'value' in entry:
                self._settings[str(key)] = {
                    'value': entry['value'],
                    'encrypted': bool(entry.get('encrypted', False)),
                    'updated_at': entry.get('updated_at'),
                }
            else:
                self._settings[str(key)] = {'value': entry, 'encrypted': False, 'updated_at': None}

    def _commit(self, settings: Dict[str, Dict[str, Any]]) -> None:
        if self.file_path:
            _dump_yaml(self.file_path, 'settings', settings)
        self._settings = settings

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._settings.get(key)
            return entry['value'] if entry else default

    def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._settings.get(key)
            return dict(entry) if entry else None

    def is_encrypted(self, key: str) -> bool:
        with self._lock:
            entry = self._settings.get(key)
            return bool(entry and entry['encrypted'])

    def set(self, key: str, value: Any, encrypted: bool = False) -> None:
        with self._lock:
            settings = dict(self._settings)
            settings[key] = {
                'value': value,
                'encrypted': encrypted,
                'updated_at': datetime.now().isoformat(),
            }
            self._commit(settings)

    def delete(self, key: str) -> bool:
        """Remove a key. Returns False when the key was not set."""
        with self._lock:
            if key not in self._settings:
                return False
            settings = dict(self._settings)
            del settings[key]
            self._commit(settings)
            return True

    def items(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {key: dict(entry) for key, entry in self._settings.items()}
