"""Tests for path validation and sanitization."""

import os

import pytest

from jd_organizer.exceptions import FileErrorKind, FileOperationError, ValidationError
from jd_organizer.utils.security import SecurityUtils


class TestValidateSourcePath:

    def test_valid(self, tmp_path):
        assert SecurityUtils.validate_source_path(f"  {tmp_path}/a.pdf ") == tmp_path / "a.pdf"

    @pytest.mark.parametrize("path", [None, "", "   ", "/data/../../etc/passwd", "a\x00b"])
    def test_rejected(self, path):
        with pytest.raises(ValidationError):
            SecurityUtils.validate_source_path(path)

    def test_dots_inside_names_are_fine(self):
        SecurityUtils.validate_source_path("/data/report..final.pdf")


class TestSanitize:

    def test_segment(self):
        assert SecurityUtils.sanitize_segment("10-19 Admin/Finance") == "10-19 Admin_Finance"
        assert SecurityUtils.sanitize_segment("..") == "_"
        assert SecurityUtils.sanitize_segment('a<b>:c"d|e?f*') == "a_b__c_d_e_f_"
        assert SecurityUtils.sanitize_segment(None) == ""

    def test_filename(self):
        assert SecurityUtils.sanitize_filename("report.pdf") == "report.pdf"
        assert SecurityUtils.sanitize_filename("../../evil.sh") == "_.._evil.sh"
        assert SecurityUtils.sanitize_filename("CON.txt") == "_CON.txt"
        assert SecurityUtils.sanitize_filename("") == "unnamed"

    def test_long_filename_keeps_extension(self):
        name = SecurityUtils.sanitize_filename("x" * 300 + ".pdf")
        assert name.endswith(".pdf")
        assert len(name) <= 255


class TestContainment:

    def test_within(self, tmp_path):
        assert SecurityUtils.is_within_base(tmp_path / "a" / "b", tmp_path)
        assert not SecurityUtils.is_within_base(tmp_path.parent / "other", tmp_path)

    def test_escape(self, tmp_path):
        with pytest.raises(FileOperationError) as exc_info:
            SecurityUtils.ensure_within_base(tmp_path / ".." / "escape.txt", tmp_path)
        assert exc_info.value.kind is FileErrorKind.PATH_ESCAPE

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlink_escape(self, tmp_path):
        base = tmp_path / "base"
        outside = tmp_path / "outside"
        base.mkdir()
        outside.mkdir()
        (base / "link").symlink_to(outside, target_is_directory=True)

        with pytest.raises(FileOperationError):
            SecurityUtils.ensure_within_base(base / "link" / "file.txt", base)
