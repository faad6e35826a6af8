"""Rule matching engine.

Evaluates active organization rules against a file in priority order and
produces ranked destination suggestions. When no rule matches, a heuristic
pass scores folders by extension type and keyword similarity.

The rule/folder snapshot is shared between watchers, so it is replaced
wholesale under a lock and never mutated in place.
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..domain.repositories import HierarchyRepository, RuleRepository
from ..domain.result import Failure, Result, Success
from ..exceptions import ValidationError
from ..models.config import MatchingConfig
from ..models.rules import (
    BatchMatchResult,
    Confidence,
    FileDescriptor,
    FolderTarget,
    MatchSuggestion,
    OrganizationRule,
    RuleSuggestion,
    RuleType,
    TargetType,
)
from ..utils.string_similarity import StringSimilarity, extract_keywords, split_tokens
from .file_types import get_extension_hint
from .pattern_matchers import match_rule
from .rule_schema import UPDATABLE_FIELDS, clamp_priority, validate_rule

logger = logging.getLogger(__name__)

FileLike = Union[FileDescriptor, str, Path]

# Folder tokens this short are too noisy for similarity scoring
MIN_FOLDER_TOKEN_LENGTH = 3


@dataclass(frozen=True)
class _Snapshot:
    rules: Tuple[OrganizationRule, ...]
    folders: Tuple[FolderTarget, ...]
    loaded_at: float


def _as_descriptor(file: FileLike) -> FileDescriptor:
    if isinstance(file, FileDescriptor):
        return file
    return FileDescriptor.from_path(file)


def find_target_folder(rule: OrganizationRule,
                       folders: Iterable[FolderTarget]) -> Optional[FolderTarget]:
    """Resolve a rule's target to a concrete folder.

    folder   -> exact folder number
    category -> first folder whose category number equals target_id
    area     -> first folder whose category number lies in the "NN-NN" range
    """
    target = rule.target_id.strip()

    if rule.target_type is TargetType.FOLDER:
        return next((f for f in folders if f.folder_number == target), None)

    if rule.target_type is TargetType.CATEGORY:
        try:
            category = int(target)
        except ValueError:
            return None
        return next((f for f in folders if f.category_number == category), None)

    if rule.target_type is TargetType.AREA:
        try:
            start, end = (int(part) for part in target.split('-', 1))
        except ValueError:
            return None
        return next((f for f in folders if start <= f.category_number <= end), None)

    return None


class MatchingEngine:
    """Matches files against organization rules."""

    def __init__(self, rules: RuleRepository, hierarchy: HierarchyRepository,
                 config: Optional[MatchingConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.rules = rules
        self.hierarchy = hierarchy
        self.config = config or MatchingConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[_Snapshot] = None

    # Cache

    def _is_stale(self, snapshot: Optional[_Snapshot]) -> bool:
        if snapshot is None:
            return True
        return self._clock() - snapshot.loaded_at >= self.config.cache_ttl_seconds

    def _get_snapshot(self) -> _Snapshot:
        snapshot = self._snapshot
        if not self._is_stale(snapshot):
            return snapshot

        # Another thread is refreshing; a stale snapshot is good enough
        if snapshot is not None and not self._lock.acquire(blocking=False):
            return snapshot
        if snapshot is None:
            self._lock.acquire()

        try:
            current = self._snapshot
            if not self._is_stale(current):
                return current
            try:
                fresh = _Snapshot(
                    rules=tuple(self.rules.list_active_rules()),
                    folders=tuple(self.hierarchy.list_folder_targets()),
                    loaded_at=self._clock(),
                )
            except Exception as e:
                if current is None:
                    raise
                logger.warning(f"Rule cache refresh failed, using previous snapshot: {e}")
                return current
            self._snapshot = fresh
            logger.debug(f"Loaded {len(fresh.rules)} rules and {len(fresh.folders)} folders")
            return fresh
        finally:
            self._lock.release()

    def invalidate_cache(self) -> None:
        """Force a reload on the next match; call after rule or folder changes."""
        with self._lock:
            self._snapshot = None

    def get_rules(self) -> List[OrganizationRule]:
        return list(self._get_snapshot().rules)

    def get_folders(self) -> List[FolderTarget]:
        return list(self._get_snapshot().folders)

    # Matching

    def match_file(self, file: FileLike) -> Result[List[MatchSuggestion]]:
        """Return suggestions sorted by confidence, then rule priority."""
        try:
            descriptor = _as_descriptor(file)
            snapshot = self._get_snapshot()
            return Success(self._match(descriptor, snapshot))
        except Exception as e:
            logger.error(f"Matching failed for {file}: {e}")
            return Failure(e)

    def _match(self, file: FileDescriptor, snapshot: _Snapshot) -> List[MatchSuggestion]:
        suggestions = []
        for rule in snapshot.rules:
            if not rule.is_active:
                continue
            hit = match_rule(rule, file)
            if hit is None:
                continue
            folder = find_target_folder(rule, snapshot.folders)
            if folder is None:
                logger.debug(f"Rule '{rule.name}' matched but target {rule.target_id} is missing")
                continue
            suggestions.append(MatchSuggestion(folder, rule, hit.confidence, hit.reason))

        if not suggestions:
            suggestions = self.heuristic_match(file, snapshot.folders)

        return sorted(suggestions, key=lambda s: s.sort_key)

    def heuristic_match(self, file: FileDescriptor,
                        folders: Iterable[FolderTarget]) -> List[MatchSuggestion]:
        """Suggest folders without a rule, from extension type and keyword similarity."""
        folders = list(folders)
        suggestions = []

        hint = get_extension_hint(file.extension)
        if hint is not None:
            for folder in folders:
                folder_words = [w for w in (
                    folder.name.lower(),
                    *(k.strip().lower() for k in folder.keywords),
                    folder.category_name.lower(),
                ) if w]
                score = sum(
                    1 for keyword in hint.keywords
                    if any(fw in keyword or keyword in fw for fw in folder_words)
                )
                if score > 0:
                    suggestions.append(MatchSuggestion(
                        folder=folder,
                        rule=None,
                        confidence=Confidence.MEDIUM if score >= 2 else Confidence.LOW,
                        reason=f'File type "{hint.file_type}" may belong here',
                    ))

        file_keywords = extract_keywords(file.filename)
        threshold = self.config.similarity_threshold
        for folder in folders:
            folder_tokens = [t for t in (
                *split_tokens(folder.name),
                *(k.strip().lower() for k in folder.keywords),
            ) if len(t) >= MIN_FOLDER_TOKEN_LENGTH]
            for file_kw in file_keywords:
                best = StringSimilarity.best_match(file_kw, folder_tokens, threshold)
                if best is not None:
                    suggestions.append(MatchSuggestion(
                        folder=folder,
                        rule=None,
                        confidence=Confidence.LOW,
                        reason=f'Keyword similarity: "{file_kw}" ~ "{best[0]}"',
                    ))
                    break

        seen = set()
        unique = []
        for suggestion in suggestions:
            if suggestion.folder.folder_number in seen:
                continue
            seen.add(suggestion.folder.folder_number)
            unique.append(suggestion)
        return unique

    def batch_match(self, files: Iterable[FileLike]) -> Result[List[BatchMatchResult]]:
        try:
            snapshot = self._get_snapshot()
            results = []
            for file in files:
                descriptor = _as_descriptor(file)
                results.append(BatchMatchResult(descriptor, self._match(descriptor, snapshot)))
            return Success(results)
        except Exception as e:
            logger.error(f"Batch matching failed: {e}")
            return Failure(e)

    def record_match(self, rule_id: Optional[int]) -> Result[None]:
        """Count a confirmed use of a rule. Never call this for mere suggestions."""
        if rule_id is None:
            return Success(None)
        try:
            self.rules.increment_match_count(rule_id)
            return Success(None)
        except Exception as e:
            logger.warning(f"Failed to record match for rule {rule_id}: {e}")
            return Failure(e)

    # Rule management

    def create_rule(self, rule: OrganizationRule) -> Result[OrganizationRule]:
        """Validate and store a rule, then invalidate the cache."""
        try:
            rule = replace(rule, priority=clamp_priority(rule.priority))
            validate_rule(rule)
            created = self.rules.create_rule(rule)
        except Exception as e:
            return Failure(e)
        self.invalidate_cache()
        logger.info(f"Created rule '{created.name}' ({created.rule_type.value})")
        return Success(created)

    def update_rule(self, rule_id: int, **fields: Any) -> Result[OrganizationRule]:
        """Update rule fields, re-validating the merged rule before writing."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            return Failure(ValidationError(
                f"Unknown rule fields: {', '.join(sorted(unknown))}", field="rule"))

        try:
            existing = self.rules.get_rule(rule_id)
            if existing is None:
                return Failure(ValidationError(f"Rule {rule_id} not found", field="id"))

            if 'priority' in fields:
                fields['priority'] = clamp_priority(fields['priority'])
            try:
                merged = replace(existing, **fields)
            except ValueError as e:
                raise ValidationError(str(e), field="rule") from e
            validate_rule(merged)

            normalized = {name: getattr(merged, name) for name in fields}
            updated = self.rules.update_rule(rule_id, **normalized)
        except Exception as e:
            return Failure(e)

        self.invalidate_cache()
        return Success(updated)

    def suggest_rules_for_folder(self, files: Iterable[FileLike]) -> List[RuleSuggestion]:
        return suggest_rules_for_folder(files)


def _rating(count: int, high: int, medium: int) -> Confidence:
    if count >= high:
        return Confidence.HIGH
    if count >= medium:
        return Confidence.MEDIUM
    return Confidence.LOW


def suggest_rules_for_folder(files: Iterable[FileLike]) -> List[RuleSuggestion]:
    """Propose rules from the files already living in a folder.

    Extensions seen 3+ times become extension rules; filename keywords of
    4+ characters seen 3+ times become keyword rules.
    """
    descriptors = [f if isinstance(f, FileDescriptor) else FileDescriptor.from_name(Path(f).name, f)
                   for f in files]

    ext_counts: Dict[str, int] = Counter(d.extension for d in descriptors if d.extension)
    keyword_counts: Dict[str, int] = Counter(
        kw for d in descriptors for kw in extract_keywords(d.filename)
    )

    suggestions = []
    for ext, count in ext_counts.items():
        if count >= 3:
            suggestions.append(RuleSuggestion(
                rule_type=RuleType.EXTENSION,
                pattern=ext,
                confidence=_rating(count, high=10, medium=5),
                reason=f"{count} .{ext} files found",
            ))

    for keyword, count in keyword_counts.items():
        if count >= 3 and len(keyword) >= 4:
            suggestions.append(RuleSuggestion(
                rule_type=RuleType.KEYWORD,
                pattern=keyword,
                confidence=_rating(count, high=8, medium=5),
                reason=f'"{keyword}" appears in {count} filenames',
            ))

    return sorted(suggestions, key=lambda s: -s.confidence.rank)
