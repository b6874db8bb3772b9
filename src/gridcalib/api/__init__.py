from gridcalib.api.calibrate import CalibrationResult, SolverOutput, calibrate_grid, opencv_solver
from gridcalib.api.stage import StageResult, apply_match_grid, apply_undistort

__all__ = [
    "CalibrationResult",
    "SolverOutput",
    "StageResult",
    "apply_match_grid",
    "apply_undistort",
    "calibrate_grid",
    "opencv_solver",
]
