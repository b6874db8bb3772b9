from gridcalib import config
from gridcalib.api import CalibrationResult, StageResult, apply_match_grid, apply_undistort, calibrate_grid
from gridcalib.core.correspondence import match_grid_points
from gridcalib.core.grid_store import EmptyGridError, GridBoundsError, GridStore
from gridcalib.core.sampling import SamplingPolicy

__all__ = [
    "config",
    "CalibrationResult",
    "StageResult",
    "apply_match_grid",
    "apply_undistort",
    "calibrate_grid",
    "match_grid_points",
    "EmptyGridError",
    "GridBoundsError",
    "GridStore",
    "SamplingPolicy",
]
