"""Unit tests for the build gate (storybook_branches.builder.gate)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from storybook_branches.builder import BuildGate


class TestBuildGate:
    @pytest.mark.unit
    def test_missing_marker_requires_build(self, tmp_path: Path):
        gate = BuildGate()
        assert gate.read_marker(tmp_path / "main") is None
        assert gate.needs_build(tmp_path / "main", "abc123")

    @pytest.mark.unit
    def test_matching_marker_is_up_to_date(self, tmp_path: Path):
        gate = BuildGate()
        gate.stamp(tmp_path, "abc123")
        assert not gate.needs_build(tmp_path, "abc123")

    @pytest.mark.unit
    def test_stale_marker_requires_build(self, tmp_path: Path):
        gate = BuildGate()
        gate.stamp(tmp_path, "abc123")
        assert gate.needs_build(tmp_path, "def456")

    @pytest.mark.unit
    def test_marker_whitespace_ignored(self, tmp_path: Path):
        (tmp_path / ".head").write_text("abc123\n", encoding="utf-8")
        assert not BuildGate().needs_build(tmp_path, "abc123")

    @pytest.mark.unit
    def test_stamp_creates_directory(self, tmp_path: Path):
        output = tmp_path / "storybooks" / "feature" / "login"
        path = BuildGate().stamp(output, "abc123")
        assert path == output / ".head"
        assert path.read_text(encoding="utf-8") == "abc123"

    @pytest.mark.unit
    def test_needs_build_never_writes(self, tmp_path: Path):
        gate = BuildGate()
        for _ in range(3):
            gate.needs_build(tmp_path / "main", "abc123")
        assert not (tmp_path / "main").exists()

    @pytest.mark.unit
    def test_repeated_checks_keep_first_marker(self, tmp_path: Path):
        gate = BuildGate()
        gate.stamp(tmp_path, "abc123")
        for _ in range(5):
            assert not gate.needs_build(tmp_path, "abc123")
        assert gate.read_marker(tmp_path) == "abc123"

    @pytest.mark.unit
    def test_custom_marker_file(self, tmp_path: Path):
        gate = BuildGate(marker_file=".built-commit")
        gate.stamp(tmp_path, "abc123")
        assert (tmp_path / ".built-commit").exists()

    @pytest.mark.unit
    def test_unreadable_marker_raises(self, tmp_path: Path):
        BuildGate().stamp(tmp_path, "abc123")
        with patch.object(Path, "read_text", side_effect=PermissionError("denied")):
            with pytest.raises(PermissionError):
                BuildGate().read_marker(tmp_path)
