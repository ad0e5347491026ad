"""realign verifier -- runs install, build, synth and test after a restructure."""

from realign.verifier.results import StepResult, TestCounts, VerificationReport, parse_test_counts
from realign.verifier.runner import VerificationRunner

__all__ = [
    "StepResult",
    "TestCounts",
    "VerificationReport",
    "VerificationRunner",
    "parse_test_counts",
]
