"""External collaborators: circle directory and disbursement rail."""

from xnscore.circles.directory import Circle, CircleDirectory, InMemoryCircleDirectory
from xnscore.circles.disbursement import AdvanceReceipt, Disbursement, InMemoryDisbursement

__all__ = [
    "AdvanceReceipt",
    "Circle",
    "CircleDirectory",
    "Disbursement",
    "InMemoryCircleDirectory",
    "InMemoryDisbursement",
]
