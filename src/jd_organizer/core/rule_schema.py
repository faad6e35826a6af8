"""JSON schema and validation for rule definitions."""

import re
from typing import Any, Dict, List

import jsonschema

from ..exceptions import ValidationError
from ..models.rules import OrganizationRule, RuleType, TargetType
from .pattern_matchers import exclude_patterns, split_clauses

MIN_PRIORITY = 0
MAX_PRIORITY = 100
DEFAULT_PRIORITY = 50

FOLDER_NUMBER_RE = re.compile(r'^\d{2}\.\d{2}$')
CATEGORY_ID_RE = re.compile(r'^\d{2}$')
AREA_ID_RE = re.compile(r'^(\d{2})-(\d{2})$')

# JSON Schema for a single rule payload
RULE_SCHEMA = {
    "type": "object",
    "required": ["name", "rule_type", "pattern", "target_type", "target_id"],
    "properties": {
        "name": {
            "type": "string",
            "minLength": 1,
            "maxLength": 200,
            "description": "Human readable name of the rule"
        },
        "rule_type": {
            "type": "string",
            "enum": [t.value for t in RuleType],
            "description": "Which matcher evaluates the pattern"
        },
        "pattern": {
            "type": "string",
            "minLength": 1,
            "maxLength": 500,
            "description": "Strategy-encoded pattern, e.g. 'pdf' or 'ext:pdf,keyword:invoice'"
        },
        "target_type": {
            "type": "string",
            "enum": [t.value for t in TargetType],
            "description": "What target_id refers to"
        },
        "target_id": {
            "type": "string",
            "minLength": 1,
            "maxLength": 50,
            "description": "Folder number (NN.NN), category (NN) or area range (NN-NN)"
        },
        "priority": {
            "type": "integer",
            "description": "Higher values are evaluated first; clamped to 0..100"
        },
        "is_active": {
            "type": "boolean",
            "default": True
        },
        "exclude_pattern": {
            "type": ["string", "null"],
            "maxLength": 500,
            "description": "Substring alternatives, or a /regex/ tested against filename and path"
        }
    }
}

# Fields callers may change through update_rule
UPDATABLE_FIELDS = frozenset(RULE_SCHEMA["properties"]) | {"match_count"}

_COMPOUND_KINDS = {'ext', 'keyword'}
_DATE_KINDS = {'year', 'month', 'quarter', 'pattern'}


def validate_rule_json(rule_data: Dict[str, Any]) -> List[str]:
    """Validate a rule payload against the schema.

    Returns:
        List of validation error messages
    """
    validator = jsonschema.Draft7Validator(RULE_SCHEMA)
    errors = []
    for e in sorted(validator.iter_errors(rule_data), key=lambda e: list(e.absolute_path)):
        path = " -> ".join(str(p) for p in e.absolute_path) if e.absolute_path else "root"
        errors.append(f"Validation error at {path}: {e.message}")
    return errors


def rule_to_payload(rule: OrganizationRule) -> Dict[str, Any]:
    return {
        "name": rule.name,
        "rule_type": rule.rule_type.value,
        "pattern": rule.pattern,
        "target_type": rule.target_type.value,
        "target_id": rule.target_id,
        "priority": rule.priority,
        "is_active": rule.is_active,
        "exclude_pattern": rule.exclude_pattern,
    }


def clamp_priority(priority: Any) -> int:
    """Clamp a priority to 0..100; missing values fall back to the default."""
    if priority is None:
        return DEFAULT_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority)))


def pattern_errors(rule_type: RuleType, pattern: str) -> List[str]:
    """Per-type syntax check of a rule pattern."""
    errors = []

    if rule_type is RuleType.EXTENSION:
        if re.search(r'[/\\\s]', pattern.strip()) or not pattern.strip().lstrip('.'):
            errors.append(f"Invalid extension pattern: '{pattern}'")

    elif rule_type in (RuleType.KEYWORD, RuleType.PATH):
        if not split_clauses(pattern):
            errors.append(f"{rule_type.value.capitalize()} pattern has no terms")

    elif rule_type is RuleType.REGEX:
        try:
            re.compile(pattern)
        except re.error as e:
            errors.append(f"Invalid regex pattern: {e}")

    elif rule_type is RuleType.COMPOUND:
        kinds = set()
        for clause in split_clauses(pattern):
            kind, sep, value = clause.partition(':')
            kind = kind.strip().lower()
            if not sep or kind not in _COMPOUND_KINDS or not value.strip():
                errors.append(f"Invalid compound clause: '{clause}'")
            kinds.add(kind)
        if not errors and kinds != _COMPOUND_KINDS:
            errors.append("Compound pattern needs at least one ext: and one keyword: clause")

    elif rule_type is RuleType.DATE:
        clauses = split_clauses(pattern)
        if not clauses:
            errors.append("Date pattern has no clauses")
        for clause in clauses:
            kind, sep, value = clause.partition(':')
            if not sep or kind.strip().lower() not in _DATE_KINDS:
                errors.append(f"Invalid date clause: '{clause}'")

    return errors


def target_errors(target_type: TargetType, target_id: str) -> List[str]:
    if target_type is TargetType.FOLDER and not FOLDER_NUMBER_RE.match(target_id):
        return [f"Folder target must look like NN.NN, got '{target_id}'"]
    if target_type is TargetType.CATEGORY and not CATEGORY_ID_RE.match(target_id):
        return [f"Category target must look like NN, got '{target_id}'"]
    if target_type is TargetType.AREA:
        m = AREA_ID_RE.match(target_id)
        if not m or int(m.group(1)) > int(m.group(2)):
            return [f"Area target must look like NN-NN, got '{target_id}'"]
    return []


def exclude_errors(exclude_pattern: Any) -> List[str]:
    errors = []
    for pattern in exclude_patterns(exclude_pattern):
        if len(pattern) > 2 and pattern.startswith('/') and pattern.endswith('/'):
            try:
                re.compile(pattern[1:-1])
            except re.error as e:
                errors.append(f"Invalid exclude regex '{pattern}': {e}")
    return errors


def validate_rule(rule: OrganizationRule) -> None:
    """Validate a rule before it is stored or activated.

    Raises:
        ValidationError: With every problem found, joined into one message
    """
    errors = validate_rule_json(rule_to_payload(rule))
    if not errors:
        errors.extend(pattern_errors(rule.rule_type, rule.pattern))
        errors.extend(target_errors(rule.target_type, rule.target_id))
        errors.extend(exclude_errors(rule.exclude_pattern))

    if errors:
        raise ValidationError("; ".join(errors), field="rule")


def rule_from_payload(rule_data: Dict[str, Any]) -> OrganizationRule:
    """Build a validated rule from a JSON-style payload.

    Raises:
        ValidationError: If the payload or its pattern is malformed
    """
    errors = validate_rule_json(rule_data)
    if errors:
        raise ValidationError("; ".join(errors), field="rule")

    rule = OrganizationRule(
        name=rule_data["name"],
        rule_type=RuleType(rule_data["rule_type"]),
        pattern=rule_data["pattern"],
        target_type=TargetType(rule_data["target_type"]),
        target_id=rule_data["target_id"],
        priority=clamp_priority(rule_data.get("priority")),
        is_active=rule_data.get("is_active", True),
        exclude_pattern=rule_data.get("exclude_pattern"),
    )
    validate_rule(rule)
    return rule


def validate_folder_number(folder_number: str) -> str:
    if not isinstance(folder_number, str) or not FOLDER_NUMBER_RE.match(folder_number.strip()):
        raise ValidationError(f"Invalid folder number: {folder_number!r}", field="folder_number")
    return folder_number.strip()
