"""
Unit tests for repeated-tool-call detection
"""

import pytest

from session_tracer.monitoring.heuristics import (
    detect_tool_loop,
    find_tool_loops,
    first_tool_loop,
)


class TestDetectToolLoop:
    """Test the shared loop predicate"""

    def test_three_identical_calls_is_loop(self):
        """Test three consecutive identical names count as a loop"""
        assert detect_tool_loop(["read", "read", "read"]) is True

    def test_two_identical_calls_is_not_loop(self):
        """Test runs below the threshold are ignored"""
        assert detect_tool_loop(["read", "read", "write", "read"]) is False

    def test_non_consecutive_repeats_are_not_loop(self):
        """Test repeats separated by another tool are not a loop"""
        assert detect_tool_loop(["read", "write", "read", "write", "read"]) is False

    def test_empty_sequence(self):
        """Test empty input"""
        assert detect_tool_loop([]) is False

    def test_custom_threshold(self):
        """Test a lower threshold"""
        assert detect_tool_loop(["bash", "bash"], threshold=2) is True
        assert detect_tool_loop(["bash", "bash", "bash"], threshold=4) is False

    def test_invalid_threshold(self):
        """Test threshold below two is rejected"""
        with pytest.raises(ValueError):
            detect_tool_loop(["bash"], threshold=1)


class TestFindToolLoops:
    """Test loop enumeration"""

    def test_reports_every_run(self):
        """Test every qualifying run is reported in order"""
        names = ["a", "a", "a", "b", "c", "c", "c", "c"]
        assert find_tool_loops(names) == [("a", 0, 3), ("c", 4, 4)]

    def test_run_at_end(self):
        """Test a run that ends the sequence is found"""
        assert find_tool_loops(["x", "y", "y", "y"]) == [("y", 1, 3)]

    def test_first_tool_loop(self):
        """Test first_tool_loop returns the earliest run or None"""
        assert first_tool_loop(["a", "b", "b", "b"]) == ("b", 1, 3)
        assert first_tool_loop(["a", "b"]) is None
