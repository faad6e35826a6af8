"""Tests for the rule matching engine."""

import pytest
from hypothesis import given, settings, strategies as st

from jd_organizer.core.matching_engine import (
    MatchingEngine,
    find_target_folder,
    suggest_rules_for_folder,
)
from jd_organizer.core.rule_helpers import (
    create_compound_rule,
    create_extension_rule,
    create_keyword_rule,
)
from jd_organizer.exceptions import ValidationError
from jd_organizer.infrastructure.repositories.memory_repository import InMemoryRepository
from jd_organizer.models.config import MatchingConfig
from jd_organizer.models.rules import (
    Confidence,
    FileDescriptor,
    FolderTarget,
    OrganizationRule,
    RuleType,
)

from conftest import FOLDERS


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def rule(rule_type, pattern, target_id="11.01", target_type="folder", priority=50, **kwargs):
    return OrganizationRule(
        name=f"{rule_type}:{pattern}",
        rule_type=rule_type,
        pattern=pattern,
        target_type=target_type,
        target_id=target_id,
        priority=priority,
        **kwargs,
    )


class TestMatchFile:

    def test_rule_match(self, engine):
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        suggestions = engine.match_file(FileDescriptor.from_name("scan.pdf")).value()

        assert len(suggestions) == 1
        assert suggestions[0].folder.folder_number == "11.01"
        assert suggestions[0].confidence is Confidence.HIGH
        assert suggestions[0].is_heuristic is False

    def test_priority_breaks_confidence_ties(self, engine):
        engine.create_rule(create_extension_rule("pdf", "11.02"))
        engine.create_rule(create_keyword_rule("invoice", "11.01"))

        suggestions = engine.match_file(FileDescriptor.from_name("invoice_04.pdf")).value()

        assert [s.folder.folder_number for s in suggestions] == ["11.01", "11.02"]

    def test_confidence_beats_priority(self, engine):
        engine.create_rule(rule("regex", r"invoice", target_id="11.02", priority=90))
        engine.create_rule(create_extension_rule("pdf", "11.01"))

        suggestions = engine.match_file(FileDescriptor.from_name("invoice.pdf")).value()

        assert suggestions[0].folder.folder_number == "11.01"
        assert suggestions[1].confidence is Confidence.LOW

    def test_compound_rule(self, engine):
        engine.create_rule(create_compound_rule("pdf", ["invoice"], "11.01"))
        suggestions = engine.match_file(FileDescriptor.from_name("invoice.pdf")).value()
        assert suggestions[0].rule.rule_type is RuleType.COMPOUND

    def test_missing_target_folder_is_skipped(self, engine):
        engine.create_rule(rule("extension", "pdf", target_id="99.99"))
        suggestions = engine.match_file(FileDescriptor.from_name("x.pdf")).value()
        assert all(s.rule is None for s in suggestions)

    def test_accepts_paths(self, engine, tmp_path):
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        path = tmp_path / "scan.pdf"
        path.write_bytes(b"%PDF")

        suggestions = engine.match_file(path).value()
        assert suggestions[0].folder.folder_number == "11.01"

    def test_repository_failure_is_a_failure_result(self):
        class Broken(InMemoryRepository):
            def list_active_rules(self):
                raise RuntimeError("database locked")

        repo = Broken()
        result = MatchingEngine(repo, repo).match_file(FileDescriptor.from_name("a.pdf"))
        assert result.is_failure()
        assert "database locked" in str(result.error())

    def test_batch_match(self, engine):
        engine.create_rule(create_extension_rule("jpg", "21.01"))
        results = engine.batch_match([
            FileDescriptor.from_name("a.jpg"),
            FileDescriptor.from_name("b.unknownext"),
        ]).value()

        assert results[0].suggestions[0].folder.folder_number == "21.01"
        assert results[1].suggestions == []


class TestHeuristicMatch:

    def test_extension_hint(self, engine):
        suggestions = engine.match_file(FileDescriptor.from_name("vacation.jpg")).value()

        assert len(suggestions) == 1
        assert suggestions[0].folder.folder_number == "21.01"
        assert suggestions[0].confidence is Confidence.MEDIUM
        assert suggestions[0].is_heuristic

    def test_keyword_similarity(self, engine):
        suggestions = engine.match_file(FileDescriptor.from_name("python_helpers.txt")).value()

        assert [s.folder.folder_number for s in suggestions] == ["31.01"]
        assert suggestions[0].confidence is Confidence.LOW
        assert "python" in suggestions[0].reason

    def test_no_suggestion(self, engine):
        assert engine.match_file(FileDescriptor.from_name("zzz.qqq")).value() == []

    def test_one_suggestion_per_folder(self, engine):
        suggestions = engine.heuristic_match(FileDescriptor.from_name("photo_image.jpg"),
                                             engine.get_folders())
        numbers = [s.folder.folder_number for s in suggestions]
        assert len(numbers) == len(set(numbers))


class TestTargetResolution:

    def test_folder_target(self):
        assert find_target_folder(rule("extension", "pdf", "11.02"), FOLDERS).name == "Receipts"

    def test_category_target(self):
        target = find_target_folder(rule("extension", "pdf", "11", target_type="category"), FOLDERS)
        assert target.folder_number == "11.01"

    def test_area_target(self):
        target = find_target_folder(rule("extension", "pdf", "20-29", target_type="area"), FOLDERS)
        assert target.folder_number == "21.01"

    def test_unresolvable(self):
        assert find_target_folder(rule("extension", "pdf", "50-59", target_type="area"), FOLDERS) is None
        assert find_target_folder(rule("extension", "pdf", "xx", target_type="category"), FOLDERS) is None


class TestRuleCache:

    def test_snapshot_refreshes_after_ttl(self, repository):
        clock = FakeClock()
        engine = MatchingEngine(repository, repository, MatchingConfig(cache_ttl_seconds=30), clock)
        assert engine.get_rules() == []

        repository.create_rule(create_extension_rule("pdf", "11.01"))
        assert engine.get_rules() == []

        clock.now += 31
        assert len(engine.get_rules()) == 1

    def test_create_rule_invalidates(self, repository):
        clock = FakeClock()
        engine = MatchingEngine(repository, repository, clock=clock)
        engine.get_rules()

        engine.create_rule(create_extension_rule("pdf", "11.01"))
        assert len(engine.get_rules()) == 1

    def test_failed_refresh_keeps_previous_snapshot(self, repository):
        clock = FakeClock()
        engine = MatchingEngine(repository, repository, clock=clock)
        engine.create_rule(create_extension_rule("pdf", "11.01"))
        assert len(engine.get_rules()) == 1

        def broken():
            raise RuntimeError("gone")

        repository.list_active_rules = broken
        clock.now += 3600
        assert len(engine.get_rules()) == 1


class TestRuleManagement:

    def test_create_rule_clamps_priority(self, engine):
        created = engine.create_rule(rule("extension", "pdf", priority=250)).value()
        assert created.priority == 100
        assert created.id is not None

    def test_create_invalid_rule(self, engine):
        result = engine.create_rule(rule("regex", "(oops"))
        assert result.is_failure()
        assert isinstance(result.error(), ValidationError)

    def test_update_rule(self, engine):
        created = engine.create_rule(create_extension_rule("pdf", "11.01")).value()
        updated = engine.update_rule(created.id, pattern="docx", priority=-5).value()

        assert updated.pattern == "docx"
        assert updated.priority == 0
        assert engine.get_rules()[0].pattern == "docx"

    def test_update_unknown_field(self, engine):
        created = engine.create_rule(create_extension_rule("pdf", "11.01")).value()
        result = engine.update_rule(created.id, colour="red")
        assert isinstance(result.error(), ValidationError)

    def test_update_to_invalid_pattern(self, engine):
        created = engine.create_rule(rule("regex", r"^inv")).value()
        assert engine.update_rule(created.id, pattern="[").is_failure()

    def test_update_missing_rule(self, engine):
        assert engine.update_rule(999, pattern="pdf").is_failure()

    def test_record_match(self, engine, repository):
        created = engine.create_rule(create_extension_rule("pdf", "11.01")).value()
        assert engine.record_match(created.id).is_success()
        assert engine.record_match(None).is_success()
        assert repository.get_rule(created.id).match_count == 1


class TestRuleSuggestions:

    def test_extension_and_keyword(self):
        files = [f"/docs/invoice_{i}.pdf" for i in range(10)]
        suggestions = suggest_rules_for_folder(files)
        by_type = {s.rule_type: s for s in suggestions}

        assert by_type[RuleType.EXTENSION].pattern == "pdf"
        assert by_type[RuleType.EXTENSION].confidence is Confidence.HIGH
        assert by_type[RuleType.KEYWORD].pattern == "invoice"
        assert by_type[RuleType.KEYWORD].confidence is Confidence.HIGH

    def test_thresholds(self):
        files = [f"note_{i}.txt" for i in range(5)] + ["a.csv", "b.csv"]
        suggestions = suggest_rules_for_folder(files)

        patterns = {s.pattern: s.confidence for s in suggestions}
        assert patterns["txt"] is Confidence.MEDIUM
        assert patterns["note"] is Confidence.MEDIUM
        assert "csv" not in patterns

    def test_empty_folder(self):
        assert suggest_rules_for_folder([]) == []


_matchable = st.sampled_from([
    ("extension", "pdf"),
    ("keyword", "report"),
    ("regex", "rep.rt"),
    ("path", "inbox"),
])


@settings(max_examples=50, deadline=None)
@given(st.lists(st.tuples(_matchable, st.integers(min_value=0, max_value=100)),
                min_size=1, max_size=8))
def test_suggestions_are_sorted(specs):
    """Suggestions never increase in confidence, and ties never increase in priority."""
    repo = InMemoryRepository()
    repo.add_folder_target(FolderTarget("11.01", "Reports"))
    engine = MatchingEngine(repo, repo)
    for (rule_type, pattern), priority in specs:
        repo.create_rule(rule(rule_type, pattern, priority=priority))

    file = FileDescriptor.from_name("report.pdf", "/home/user/inbox/report.pdf")
    suggestions = engine.match_file(file).value()

    assert len(suggestions) == len(specs)
    keys = [(s.confidence.rank, s.rule.priority) for s in suggestions]
    assert keys == sorted(keys, reverse=True)


@settings(max_examples=50, deadline=None)
@given(st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=6),
       st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=1, max_size=6))
def test_extension_rule_matches_exactly_its_extension(rule_ext, file_ext):
    repo = InMemoryRepository()
    repo.add_folder_target(FolderTarget("11.01", "Zzzz"))
    engine = MatchingEngine(repo, repo)
    repo.create_rule(create_extension_rule(rule_ext.upper(), "11.01"))

    suggestions = engine.match_file(FileDescriptor.from_name(f"qqqq.{file_ext}")).value()
    rule_hits = [s for s in suggestions if not s.is_heuristic]

    assert bool(rule_hits) == (rule_ext == file_ext)
