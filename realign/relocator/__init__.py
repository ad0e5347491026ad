"""realign relocator -- moves code and keeps references pointing at it."""

from realign.relocator.boundaries import check_boundaries, find_boundary_violations
from realign.relocator.references import PathMove, Problem, Rewrite, ScanResult, scan_file
from realign.relocator.relocator import CodeRelocator, RelocationResult, RewriteRecord

__all__ = [
    "CodeRelocator",
    "PathMove",
    "Problem",
    "RelocationResult",
    "Rewrite",
    "RewriteRecord",
    "ScanResult",
    "check_boundaries",
    "find_boundary_violations",
    "scan_file",
]
