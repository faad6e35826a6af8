"""Tests for the per-type pattern matchers."""

import pytest

from jd_organizer.core.pattern_matchers import (
    exclude_patterns,
    extract_date_from_filename,
    match_rule,
    safe_regex_search,
    should_exclude,
)
from jd_organizer.models.rules import Confidence, FileDescriptor, OrganizationRule


def make_rule(rule_type, pattern, exclude_pattern=None, **kwargs):
    return OrganizationRule(
        name=f"{rule_type} rule",
        rule_type=rule_type,
        pattern=pattern,
        target_type="folder",
        target_id="11.01",
        exclude_pattern=exclude_pattern,
        **kwargs,
    )


def describe(filename, directory="/home/user/Downloads"):
    return FileDescriptor.from_name(filename, f"{directory}/{filename}")


class TestExtensionMatcher:

    @pytest.mark.parametrize("pattern", ["pdf", ".pdf", "PDF", " .Pdf "])
    def test_extension_variants_match(self, pattern):
        hit = match_rule(make_rule("extension", pattern), describe("Report.PDF"))
        assert hit is not None
        assert hit.confidence is Confidence.HIGH
        assert ".pdf" in hit.reason

    def test_other_extension_does_not_match(self):
        assert match_rule(make_rule("extension", "pdf"), describe("report.docx")) is None

    def test_file_without_extension(self):
        assert match_rule(make_rule("extension", "pdf"), describe("Makefile")) is None


class TestKeywordMatcher:

    def test_filename_hit_is_high(self):
        hit = match_rule(make_rule("keyword", "invoice"), describe("Invoice_March.pdf"))
        assert hit.confidence is Confidence.HIGH
        assert "invoice" in hit.reason

    def test_path_hit_is_medium(self):
        file = describe("scan.pdf", directory="/home/user/invoices")
        hit = match_rule(make_rule("keyword", "invoice"), file)
        assert hit.confidence is Confidence.MEDIUM

    def test_any_keyword_matches(self):
        rule = make_rule("keyword", "receipt, bill")
        assert match_rule(rule, describe("phone_bill.pdf")) is not None

    def test_no_keyword(self):
        assert match_rule(make_rule("keyword", "invoice"), describe("holiday.jpg")) is None


class TestPathMatcher:

    def test_path_substring(self):
        file = describe("notes.txt", directory="/work/Projects/Alpha")
        hit = match_rule(make_rule("path", "projects/alpha"), file)
        assert hit.confidence is Confidence.MEDIUM

    def test_path_miss(self):
        assert match_rule(make_rule("path", "projects/beta"), describe("notes.txt")) is None


class TestRegexMatcher:

    def test_regex_match_is_low(self):
        hit = match_rule(make_rule("regex", r"^inv_\d+"), describe("INV_001.pdf"))
        assert hit.confidence is Confidence.LOW

    def test_invalid_regex_is_no_match(self):
        assert match_rule(make_rule("regex", "(unclosed"), describe("(unclosed.pdf")) is None

    def test_safe_regex_search_invalid_pattern(self):
        assert safe_regex_search("[", "anything") is False

    def test_safe_regex_search_long_subject(self):
        assert safe_regex_search("needle$", "x" * 5000 + "needle") is True

    def test_anchored_regex_on_deep_path(self):
        directory = "/home/user/" + "/".join(f"nested_directory_{i:02d}" for i in range(60))
        file = describe("report.pdf", directory)
        assert len(f"{file.filename} {file.path.as_posix()}") > 1000

        assert match_rule(make_rule("regex", r"\.pdf$"), file) is not None
        assert match_rule(make_rule("regex", r"\.pdf$", exclude_pattern="/report\\.pdf$/"),
                          file) is None


class TestCompoundMatcher:

    def test_all_clauses_hold(self):
        rule = make_rule("compound", "ext:pdf,keyword:invoice")
        hit = match_rule(rule, describe("invoice_0042.pdf"))
        assert hit.confidence is Confidence.HIGH
        assert ".pdf" in hit.reason
        assert '"invoice"' in hit.reason

    def test_one_clause_fails(self):
        rule = make_rule("compound", "ext:pdf,keyword:invoice")
        assert match_rule(rule, describe("invoice_0042.docx")) is None
        assert match_rule(rule, describe("receipt_0042.pdf")) is None

    def test_unknown_clause_fails(self):
        rule = make_rule("compound", "ext:pdf,size:large")
        assert match_rule(rule, describe("invoice.pdf")) is None


class TestDateMatcher:

    def test_iso_year_is_high(self):
        hit = match_rule(make_rule("date", "year:2024"), describe("report_2024-03-15.pdf"))
        assert hit.confidence is Confidence.HIGH

    def test_month_is_zero_padded(self):
        hit = match_rule(make_rule("date", "month:7"), describe("scan_2023-07.pdf"))
        assert hit.confidence is Confidence.MEDIUM
        assert "07" in hit.reason

    def test_quarter(self):
        hit = match_rule(make_rule("date", "quarter:Q1"), describe("Report_Q1_2024.xlsx"))
        assert hit.confidence is Confidence.MEDIUM

    def test_any_date(self):
        hit = match_rule(make_rule("date", "pattern:*"), describe("minutes 2022-11-02.txt"))
        assert hit.confidence is Confidence.LOW

    def test_undated_file(self):
        assert match_rule(make_rule("date", "pattern:*"), describe("minutes.txt")) is None

    def test_wrong_year(self):
        assert match_rule(make_rule("date", "year:2020"), describe("report_2024-03-15.pdf")) is None


class TestExclusion:

    def test_substring_exclusion(self):
        rule = make_rule("keyword", "invoice", exclude_pattern="draft")
        assert match_rule(rule, describe("invoice_DRAFT.pdf")) is None
        assert match_rule(rule, describe("invoice_final.pdf")) is not None

    def test_regex_exclusion(self):
        rule = make_rule("keyword", "invoice", exclude_pattern=r"/draft_\d+/")
        assert should_exclude(rule, describe("invoice_draft_2.pdf")) is True
        assert should_exclude(rule, describe("invoice_draft.pdf")) is False

    def test_regex_with_comma_is_one_pattern(self):
        assert exclude_patterns(r"/a{1,3}/") == [r"/a{1,3}/"]
        assert exclude_patterns("tmp, old") == ["tmp", "old"]

    def test_exclusion_checks_path(self):
        rule = make_rule("extension", "pdf", exclude_pattern="archive")
        file = describe("invoice.pdf", directory="/home/user/archive")
        assert match_rule(rule, file) is None


class TestDateExtraction:

    @pytest.mark.parametrize("filename,fmt,year,month", [
        ("2024-03-15 notes.txt", "YYYY-MM-DD", "2024", "03"),
        ("scan 03-15-2024.pdf", "MM-DD-YYYY", "2024", "03"),
        ("photo 20240315.jpg", "YYYYMMDD", "2024", "03"),
        ("budget_2024_06.xlsx", "YYYY-MM", "2024", "06"),
        ("Statement March 2023.pdf", "Month-YYYY", "2023", "03"),
    ])
    def test_formats(self, filename, fmt, year, month):
        date = extract_date_from_filename(filename)
        assert date.format == fmt
        assert date.year == year
        assert date.month == month

    def test_quarter_both_orders(self):
        assert extract_date_from_filename("2024Q3 plan.pdf").quarter == "3"
        assert extract_date_from_filename("Q2-2025 plan.pdf").quarter == "2"

    def test_no_date(self):
        assert extract_date_from_filename("plan.pdf") is None
