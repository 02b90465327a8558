"""Tests for the fixed phase table."""

import pytest

from sqldeploy.domain.models.phases import PHASES, approval_phases, find_phase, get_phase


class TestPhases:
    """Tests for phase definitions."""

    def test_twenty_nine_contiguous_phases(self):
        assert [p.number for p in PHASES] == list(range(1, 30))

    def test_approval_phases(self):
        assert approval_phases() == [16, 17, 18, 19, 20, 22, 23, 24, 25, 27, 29]

    def test_get_phase(self):
        assert get_phase(4).label == "Reference data"
        assert get_phase(16).requires_approval is True
        assert get_phase(15).requires_approval is False

    @pytest.mark.parametrize("number", [0, 30, -1])
    def test_get_phase_out_of_range(self, number):
        with pytest.raises(ValueError, match="between 1 and 29"):
            get_phase(number)

    def test_find_phase_unknown(self):
        assert find_phase(30) is None

    def test_folder_name(self):
        assert get_phase(4).folder_name == "04-reference-data"
        assert get_phase(15).folder_name == "15-stored-procedures"
