"""Pattern matchers, one per rule type.

Every matcher is a pure function ``(rule, file) -> RuleMatch | None`` and
never raises: a malformed pattern is simply "no match", so one bad rule
cannot block evaluation of the others.
"""

import logging
import re
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple

from ..models.rules import Confidence, FileDescriptor, OrganizationRule, RuleMatch, RuleType
from .file_types import normalize_extension

logger = logging.getLogger(__name__)

Matcher = Callable[[OrganizationRule, FileDescriptor], Optional[RuleMatch]]

REGEX_WARN_MS = 100.0


# =============================================================================
# Regex helpers
# =============================================================================

@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> Optional[re.Pattern]:
    """Compile a case-insensitive pattern, returning None when invalid."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except (re.error, TypeError, ValueError) as e:
        logger.debug(f"Invalid regex pattern '{pattern}': {e}")
        return None


def safe_regex_search(pattern: str, text: str) -> bool:
    """Search ``text`` for ``pattern``; invalid patterns fail closed."""
    compiled = compile_pattern(pattern)
    if compiled is None:
        return False

    start = time.perf_counter()
    try:
        found = compiled.search(text) is not None
    except (RecursionError, MemoryError) as e:
        logger.warning(f"Regex evaluation failed for '{pattern}': {e}")
        return False
    elapsed_ms = (time.perf_counter() - start) * 1000
    if elapsed_ms > REGEX_WARN_MS:
        logger.warning(f"Regex took too long ({elapsed_ms:.0f}ms): {pattern}")
    return found


def _subject(file: FileDescriptor) -> str:
    return f"{file.filename} {file.path.as_posix()}"


def split_clauses(pattern: str) -> List[str]:
    """Split a comma-separated pattern into trimmed, non-empty clauses."""
    return [c.strip() for c in (pattern or "").split(',') if c.strip()]


# =============================================================================
# Exclusion
# =============================================================================

def exclude_patterns(exclude_pattern: Optional[str]) -> List[str]:
    """Split an exclude pattern into its alternatives.

    A pattern that is entirely ``/.../`` is one regex even if it contains
    commas; otherwise alternatives are comma-separated.
    """
    if not exclude_pattern or not exclude_pattern.strip():
        return []
    stripped = exclude_pattern.strip()
    if len(stripped) > 2 and stripped.startswith('/') and stripped.endswith('/'):
        return [stripped]
    return split_clauses(stripped)


def should_exclude(rule: OrganizationRule, file: FileDescriptor) -> bool:
    """Check the rule's exclude pattern against ``filename + " " + path``."""
    subject = _subject(file)
    lowered = subject.lower()

    for pattern in exclude_patterns(rule.exclude_pattern):
        if len(pattern) > 2 and pattern.startswith('/') and pattern.endswith('/'):
            if safe_regex_search(pattern[1:-1], subject):
                return True
        elif pattern.lower() in lowered:
            return True
    return False


# =============================================================================
# Date extraction
# =============================================================================

_MONTHS = {
    'jan': '01', 'feb': '02', 'mar': '03', 'apr': '04', 'may': '05', 'jun': '06',
    'jul': '07', 'aug': '08', 'sep': '09', 'oct': '10', 'nov': '11', 'dec': '12',
}


@dataclass(frozen=True)
class DateExtraction:
    """A date token found in a filename."""
    match: str
    format: str
    confidence: Confidence
    groups: Tuple[str, ...]
    year: Optional[str] = None
    month: Optional[str] = None
    quarter: Optional[str] = None


def _iso(m: re.Match) -> dict:
    return {'year': m.group(1), 'month': m.group(2)}


def _us(m: re.Match) -> dict:
    return {'year': m.group(3), 'month': m.group(1)}


def _month_name(m: re.Match) -> dict:
    return {'year': m.group(2), 'month': _MONTHS.get(m.group(1)[:3].lower())}


def _quarter(m: re.Match) -> dict:
    if m.group(1):
        return {'year': m.group(1), 'quarter': m.group(2)}
    return {'year': m.group(4), 'quarter': m.group(3)}


# Ordered: the first pattern that matches wins.
DATE_PATTERNS: List[Tuple[re.Pattern, str, Confidence, Callable[[re.Match], dict]]] = [
    (re.compile(r'(\d{4})-(\d{2})-(\d{2})'), 'YYYY-MM-DD', Confidence.HIGH, _iso),
    (re.compile(r'(\d{2})[-/](\d{2})[-/](\d{4})'), 'MM-DD-YYYY', Confidence.MEDIUM, _us),
    (re.compile(r'\b(20\d{2})(\d{2})(\d{2})\b'), 'YYYYMMDD', Confidence.MEDIUM, _iso),
    (re.compile(r'(20\d{2})[-_](\d{2})'), 'YYYY-MM', Confidence.MEDIUM, _iso),
    (re.compile(
        r'(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?|'
        r'Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)'
        r'[_\-\s]?(20\d{2})', re.IGNORECASE),
     'Month-YYYY', Confidence.MEDIUM, _month_name),
    (re.compile(r'(20\d{2})[-_]?Q([1-4])|Q([1-4])[-_]?(20\d{2})', re.IGNORECASE),
     'Quarter', Confidence.MEDIUM, _quarter),
]


def extract_date_from_filename(filename: str) -> Optional[DateExtraction]:
    """Extract the first recognizable date token from a filename."""
    for regex, fmt, confidence, parts in DATE_PATTERNS:
        m = regex.search(filename)
        if m:
            return DateExtraction(
                match=m.group(0),
                format=fmt,
                confidence=confidence,
                groups=tuple(g for g in m.groups() if g is not None),
                **parts(m),
            )
    return None


# =============================================================================
# Matchers
# =============================================================================

def match_extension(rule: OrganizationRule, file: FileDescriptor) -> Optional[RuleMatch]:
    """Case-insensitive extension equality after stripping a leading dot."""
    pattern = normalize_extension(rule.pattern)
    ext = normalize_extension(file.extension)
    if pattern and ext == pattern:
        return RuleMatch(Confidence.HIGH, f"Extension matches: .{ext}")
    return None


def match_keyword(rule: OrganizationRule, file: FileDescriptor) -> Optional[RuleMatch]:
    """Filename containment is high confidence, path containment medium."""
    filename = file.filename.lower()
    path = file.path.as_posix().lower()

    for keyword in split_clauses(rule.pattern.lower()):
        if keyword in filename:
            return RuleMatch(Confidence.HIGH, f'Filename contains: "{keyword}"')
        if keyword in path:
            return RuleMatch(Confidence.MEDIUM, f'Path contains: "{keyword}"')
    return None


def match_path(rule: OrganizationRule, file: FileDescriptor) -> Optional[RuleMatch]:
    pattern = rule.pattern.lower()
    if pattern and pattern in file.path.as_posix().lower():
        return RuleMatch(Confidence.MEDIUM, f'Path matches pattern: "{rule.pattern}"')
    return None


def match_regex(rule: OrganizationRule, file: FileDescriptor) -> Optional[RuleMatch]:
    if safe_regex_search(rule.pattern, _subject(file)):
        return RuleMatch(Confidence.LOW, "Regex pattern matched")
    return None


def match_compound(rule: OrganizationRule, file: FileDescriptor) -> Optional[RuleMatch]:
    """Every ``ext:`` and ``keyword:`` clause must hold."""
    clauses = split_clauses(rule.pattern)
    if not clauses:
        return None

    ext = normalize_extension(file.extension)
    filename = file.filename.lower()
    path = file.path.as_posix().lower()
    matched_ext = []
    matched_keywords = []

    for clause in clauses:
        kind, _, value = clause.partition(':')
        kind = kind.strip().lower()
        value = value.strip().lower()
        if not value:
            return None
        if kind == 'ext':
            if ext != normalize_extension(value):
                return None
            matched_ext.append(ext)
        elif kind == 'keyword':
            if value not in filename and value not in path:
                return None
            matched_keywords.append(value)
        else:
            return None

    parts = [f".{e}" for e in matched_ext] + [f'"{k}"' for k in matched_keywords]
    return RuleMatch(Confidence.HIGH, f"Compound match: {' + '.join(parts)}")


def match_date(rule: OrganizationRule, file: FileDescriptor) -> Optional[RuleMatch]:
    """Match ``year:``, ``month:``, ``quarter:`` and ``pattern:*`` clauses.

    Clauses are alternatives; the first one satisfied by the extracted date wins.
    """
    date = extract_date_from_filename(file.filename)
    if date is None:
        return None

    for clause in split_clauses(rule.pattern):
        kind, _, value = clause.partition(':')
        kind = kind.strip().lower()
        value = value.strip()

        if kind == 'year':
            if date.year == value:
                confidence = Confidence.HIGH if date.confidence is Confidence.HIGH else Confidence.MEDIUM
                return RuleMatch(confidence, f"Date matches year: {value}")
        elif kind == 'month':
            target = value.zfill(2)
            if date.month == target:
                return RuleMatch(Confidence.MEDIUM, f"Date matches month: {target}")
        elif kind == 'quarter':
            target = value.upper().lstrip('Q')
            if date.format == 'Quarter' and date.quarter == target:
                return RuleMatch(Confidence.MEDIUM, f"Date matches quarter: Q{target}")
        elif kind == 'pattern':
            if not value or value == '*':
                return RuleMatch(Confidence.LOW, f"Contains date: {date.match}")
    return None


MATCHERS: Dict[RuleType, Matcher] = {
    RuleType.EXTENSION: match_extension,
    RuleType.KEYWORD: match_keyword,
    RuleType.PATH: match_path,
    RuleType.REGEX: match_regex,
    RuleType.COMPOUND: match_compound,
    RuleType.DATE: match_date,
}


def match_rule(rule: OrganizationRule, file: FileDescriptor) -> Optional[RuleMatch]:
    """Apply the rule's exclusions, then dispatch to the matcher for its type."""
    try:
        if should_exclude(rule, file):
            return None
        matcher = MATCHERS.get(rule.rule_type)
        if matcher is None:
            return None
        return matcher(rule, file)
    except Exception as e:
        logger.warning(f"Rule '{rule.name}' failed to evaluate: {e}")
        return None
