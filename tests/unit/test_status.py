"""
Unit tests for the job status lifecycle.
"""

import pytest

from custom_scheduler.constants import JobStatus


class TestJobStatus:
    """Tests for JobStatus transitions."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.RESERVED, JobStatus.CLAIMED),
            (JobStatus.CLAIMED, JobStatus.COMPLETE),
            (JobStatus.RESERVED, JobStatus.COMPLETE),
        ],
    )
    def test_forward_transitions_allowed(self, current: JobStatus, target: JobStatus):
        """Test statuses may move forward."""
        assert current.can_transition_to(target) is True

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.CLAIMED, JobStatus.RESERVED),
            (JobStatus.COMPLETE, JobStatus.CLAIMED),
            (JobStatus.COMPLETE, JobStatus.RESERVED),
            (JobStatus.CLAIMED, JobStatus.CLAIMED),
            (JobStatus.COMPLETE, JobStatus.COMPLETE),
        ],
    )
    def test_backward_transitions_refused(self, current: JobStatus, target: JobStatus):
        """Test statuses never regress or repeat."""
        assert current.can_transition_to(target) is False

    def test_values_are_wire_strings(self):
        """Test the stored values."""
        assert [s.value for s in JobStatus] == ["reserved", "claimed", "complete"]
