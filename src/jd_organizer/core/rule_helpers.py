"""Shortcuts for building common rules.

The helpers only build the rule; persist it with ``MatchingEngine.create_rule``,
which validates it and invalidates the engine's cache.
"""

from typing import Iterable, Optional, Union

from ..models.rules import OrganizationRule, RuleType, TargetType
from .file_types import normalize_extension

EXTENSION_PRIORITY = 50
DATE_PRIORITY = 55
KEYWORD_PRIORITY = 60
COMPOUND_PRIORITY = 70

Keywords = Union[str, Iterable[str]]


def _keyword_list(keywords: Keywords) -> list:
    if isinstance(keywords, str):
        keywords = keywords.split(',')
    return [k.strip().lower() for k in keywords if k and k.strip()]


def create_extension_rule(extension: str, folder_number: str,
                          name: Optional[str] = None) -> OrganizationRule:
    ext = normalize_extension(extension)
    return OrganizationRule(
        name=name or f"Auto-organize .{ext} files",
        rule_type=RuleType.EXTENSION,
        pattern=ext,
        target_type=TargetType.FOLDER,
        target_id=folder_number,
        priority=EXTENSION_PRIORITY,
    )


def create_keyword_rule(keywords: Keywords, folder_number: str,
                        name: Optional[str] = None,
                        exclude_pattern: Optional[str] = None) -> OrganizationRule:
    pattern = ",".join(_keyword_list(keywords))
    return OrganizationRule(
        name=name or f"Auto-organize files containing: {pattern}",
        rule_type=RuleType.KEYWORD,
        pattern=pattern,
        target_type=TargetType.FOLDER,
        target_id=folder_number,
        priority=KEYWORD_PRIORITY,
        exclude_pattern=exclude_pattern,
    )


def create_compound_rule(extension: str, keywords: Keywords, folder_number: str,
                         name: Optional[str] = None,
                         exclude_pattern: Optional[str] = None) -> OrganizationRule:
    """Build an ``ext:<x>,keyword:<k1>,keyword:<k2>`` rule; all clauses must hold."""
    ext = normalize_extension(extension)
    keyword_list = _keyword_list(keywords)
    pattern = ",".join([f"ext:{ext}"] + [f"keyword:{k}" for k in keyword_list])
    return OrganizationRule(
        name=name or f"Auto-organize .{ext} files with: {', '.join(keyword_list)}",
        rule_type=RuleType.COMPOUND,
        pattern=pattern,
        target_type=TargetType.FOLDER,
        target_id=folder_number,
        priority=COMPOUND_PRIORITY,
        exclude_pattern=exclude_pattern,
    )


def create_date_rule(folder_number: str,
                     year: Optional[Union[int, str]] = None,
                     month: Optional[Union[int, str]] = None,
                     quarter: Optional[Union[int, str]] = None,
                     any_date: bool = False,
                     name: Optional[str] = None,
                     exclude_pattern: Optional[str] = None) -> OrganizationRule:
    """Build a date rule; with no criteria it matches any dated filename."""
    parts = []
    if year:
        parts.append(f"year:{year}")
    if month:
        parts.append(f"month:{str(month).zfill(2)}")
    if quarter:
        q = str(quarter).upper()
        parts.append(f"quarter:{q if q.startswith('Q') else 'Q' + q}")
    if any_date:
        parts.append("pattern:*")
    pattern = ",".join(parts) or "pattern:*"

    return OrganizationRule(
        name=name or f"Auto-organize files by date: {pattern}",
        rule_type=RuleType.DATE,
        pattern=pattern,
        target_type=TargetType.FOLDER,
        target_id=folder_number,
        priority=DATE_PRIORITY,
        exclude_pattern=exclude_pattern,
    )
