"""Tests for table sizing."""

from unittest.mock import patch

from reporting.compositor.drawing import _cell_text, fit_rows, max_table_rows


class TestMaxTableRows:
    def test_rows_fitting(self):
        # Title and header take two rows
        assert max_table_rows(230) == 9
        assert max_table_rows(480) == 22

    def test_tiny_slot(self):
        assert max_table_rows(30) == 0


class TestFitRows:
    def test_max_length(self):
        rows = [{"i": i} for i in range(10)]
        assert fit_rows(rows, 480, max_length=3) == rows[:3]

    def test_truncated_to_height(self):
        rows = [{"i": i} for i in range(30)]

        with patch("reporting.compositor.drawing.logger") as mock_logger:
            fitted = fit_rows(rows, 230, title="Top")

        assert len(fitted) == 9
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "table_truncated"

    def test_untouched_when_fitting(self):
        rows = [{"i": 1}]
        with patch("reporting.compositor.drawing.logger") as mock_logger:
            assert fit_rows(rows, 230) == rows
        mock_logger.warning.assert_not_called()


def test_cell_text():
    assert _cell_text(None, "en_US") == ""
    assert _cell_text(1234, "en_US") == "1,234"
    assert _cell_text(True, "en_US") == "True"
    assert _cell_text("abc", "en_US") == "abc"
