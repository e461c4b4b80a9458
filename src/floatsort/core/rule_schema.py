"""JSON schema and validation for floatsort configuration files."""

import json
from pathlib import Path
from typing import Any, Dict, List

import jsonschema

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

_NULLABLE_INT = {"type": ["integer", "null"], "minimum": 0}

CONDITION_SCHEMA = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {
            "type": "string",
            "enum": [
                "FileType", "Extension", "SizeRange", "NameContains", "NameRegex",
                "CreatedTime", "ModifiedTime", "CreatedDaysAgo", "ModifiedDaysAgo",
            ],
        },
        "file_type": {"type": "string", "enum": ["file", "folder", "both"]},
        "values": {"type": "array", "items": {"type": "string"}},
        "min": _NULLABLE_INT,
        "max": _NULLABLE_INT,
        "pattern": {"type": "string"},
        "time_type": {"type": "string", "enum": ["relative", "absolute"]},
        "comparison": {"type": "string", "enum": ["before", "after"]},
        "days": _NULLABLE_INT,
        "datetime": {"type": ["string", "null"]},
    },
    "allOf": [
        {
            "if": {"properties": {"type": {"const": "Extension"}}},
            "then": {"required": ["values"]},
        },
        {
            "if": {"properties": {"type": {"enum": ["NameContains", "NameRegex"]}}},
            "then": {"required": ["pattern"]},
        },
    ],
}

ACTION_SCHEMA = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "enum": ["MoveTo", "CopyTo", "Rename", "Delete"]},
        "destination": {"type": "string", "minLength": 1},
        "pattern": {"type": "string", "minLength": 1},
    },
    "allOf": [
        {
            "if": {"properties": {"type": {"enum": ["MoveTo", "CopyTo"]}}},
            "then": {"required": ["destination"]},
        },
        {
            "if": {"properties": {"type": {"const": "Rename"}}},
            "then": {"required": ["pattern"]},
        },
    ],
}

RULE_SCHEMA = {
    "type": "object",
    "required": ["id", "action"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "enabled": {"type": "boolean"},
        "logic": {"type": "string", "enum": ["and"]},
        "conditions": {"type": "array", "items": CONDITION_SCHEMA},
        "action": ACTION_SCHEMA,
        "priority": {"type": "integer"},
        "conflict_strategy": {"type": "string", "enum": ["skip", "overwrite", "rename"]},
        "icon": {"type": ["string", "null"]},
        "icon_svg": {"type": ["string", "null"]},
        "color": {"type": ["string", "null"]},
    },
}

FOLDER_SCHEMA = {
    "type": "object",
    "required": ["id", "path"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "path": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "enabled": {"type": "boolean"},
        "rule_ids": {"type": "array", "items": {"type": "string"}},
        "trigger_mode": {
            "type": "string",
            "enum": ["immediate", "manual", "on_startup", "scheduled"],
        },
        "schedule_type": {"type": ["string", "null"], "enum": ["interval", "daily", "weekly", None]},
        "schedule_interval_minutes": {"type": ["integer", "null"], "minimum": 1},
        "schedule_daily_time": {"type": ["string", "null"], "pattern": HHMM_PATTERN},
        "schedule_weekly_day": {"type": ["integer", "null"], "minimum": 0, "maximum": 6},
        "schedule_weekly_time": {"type": ["string", "null"], "pattern": HHMM_PATTERN},
    },
}

SETTINGS_SCHEMA = {
    "type": "object",
    "properties": {
        "stability_delay": {"type": "number", "minimum": 0},
        "stability_checks": {"type": "integer", "minimum": 1},
        "stability_check_interval": {"type": "number", "minimum": 0},
        "event_settle_delay": {"type": "number", "minimum": 0},
        "scan_pacing_delay": {"type": "number", "minimum": 0},
        "max_concurrent_checks": {"type": "integer", "minimum": 1},
        "startup_scan_delay": {"type": "number", "minimum": 0},
        "schedule_retry_backoff": {"type": "number", "exclusiveMinimum": 0},
        "schedule_max_sleep": {"type": "number", "exclusiveMinimum": 0},
        "recent_output_window": {"type": "number", "minimum": 0},
    },
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "folders": {"type": "array", "items": FOLDER_SCHEMA},
        "rules": {"type": "array", "items": RULE_SCHEMA},
        "settings": SETTINGS_SCHEMA,
    },
}


def validate_config_data(config_data: Dict[str, Any]) -> List[str]:
    """Validate configuration data against the schema.

    Returns:
        List of validation error messages, empty when valid.
    """
    validator = jsonschema.Draft7Validator(CONFIG_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(config_data), key=lambda e: list(e.absolute_path)):
        path = " -> ".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
        errors.append(f"Validation error at {path}: {error.message}")
    return errors


def validate_config_file(file_path: Path) -> List[str]:
    """Validate a configuration JSON file."""
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        return [f"JSON parsing error: {e.msg} at line {e.lineno}, column {e.colno}"]
    except OSError as e:
        return [f"Error reading file: {e}"]
    return validate_config_data(config_data)
