"""
Cartesian setpoint generation for stem climbing.

Each tick the setpoint is the current gripper position corrected by the
lateral (x, y) tracking error, plus a vertical step bounded by the maximum
climbing velocity. Joint references for the setpoint come from the external
inverse kinematics.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from stemtrack.kinematics import KinematicsSolver, Pose
from stemtrack.robot_status import RobotStatus

logger = logging.getLogger(__name__)


class StemTrackController:
    """
    Setpoint generator for the FOLLOW phase.

    Holds borrowed references to the telemetry cache (for the gripper
    orientation) and the kinematics solver; owns only the latest setpoint
    and joint references.
    """

    def __init__(
        self,
        robot_status: RobotStatus,
        solver: KinematicsSolver,
        max_z_velocity: float = 0.05,
        update_rate_hz: float = 10.0,
        log: Optional[logging.Logger] = None,
    ):
        self._robot_status = robot_status
        self._solver = solver
        self._log = log or logger

        self._max_z_velocity = 0.0
        self._update_rate = 1.0
        self.configure(max_z_velocity, update_rate_hz)

        self._setpoint = np.zeros(3)
        self._joint_refs = np.empty(0)
        self._joint_refs_valid = False
        self._solve_failures = 0

    def configure(self, max_z_velocity: float, update_rate_hz: float):
        """Set climbing speed (m/s) and control-loop rate (Hz, must be positive)."""
        if update_rate_hz <= 0:
            raise ValueError(f"update rate must be positive, got {update_rate_hz}")
        self._max_z_velocity = float(max_z_velocity)
        self._update_rate = float(update_rate_hz)

    @property
    def z_step(self) -> float:
        """Vertical displacement per tick at full climbing speed (m)."""
        return self._max_z_velocity / self._update_rate

    def update_setpoint(self, gripper_xyz, xy_err, up: int) -> np.ndarray:
        """
        Compute the next cartesian setpoint.

        Args:
            gripper_xyz: Current gripper position [x, y, z]
            xy_err: Lateral error [ex, ey], gripper minus desired position
            up: Vertical direction, -1 (down), 0 (hold) or +1 (climb)

        Returns:
            The new setpoint [x, y, z].
        """
        gripper = np.asarray(gripper_xyz, dtype=float).ravel()
        err = np.asarray(xy_err, dtype=float).ravel()

        if gripper.shape[0] != 3 or err.shape[0] != 2:
            self._log.warning(
                f"unexpected vector length in update cart setpoint, "
                f"gripper_xyz.size() = {gripper.shape[0]} xy_err.size() = {err.shape[0]}"
            )
        if gripper.shape[0] < 3:
            # Nothing to correct from, keep the previous setpoint
            return self._setpoint.copy()

        lateral = np.zeros(2)
        lateral[:min(2, err.shape[0])] = err[:2]
        direction = int(np.sign(up))

        self._setpoint = np.array([
            gripper[0] - lateral[0],
            gripper[1] - lateral[1],
            gripper[2] + direction * self.z_step,
        ])
        return self._setpoint.copy()

    @property
    def setpoint(self) -> np.ndarray:
        return self._setpoint.copy()

    def solve_joint_references(
        self,
        seed: Sequence[float],
        joint_limits: tuple[Sequence[float], Sequence[float]],
        orientation: Optional[np.ndarray] = None,
    ) -> bool:
        """
        Solve inverse kinematics for the current setpoint.

        The target orientation is the current gripper orientation, taken
        from ``orientation`` if given (the tick's pose) or from forward
        kinematics on the cached joints.

        Returns:
            True if new joint references were stored. On failure the previous
            references are kept and ``joint_refs_valid`` turns False.
        """
        if orientation is None:
            frame = self._robot_status.gripper_frame()
            if frame is None:
                self._log.warning("No gripper orientation available, keeping previous joint references")
                self._mark_failure()
                return False
            orientation = frame.orientation

        target = Pose(position=self._setpoint.copy(), orientation=np.asarray(orientation, dtype=float))
        seed = np.asarray(seed, dtype=float).ravel()

        try:
            solution = self._solver.inverse(target, seed, joint_limits)
        except Exception as e:
            self._log.warning(f"Inverse kinematics raised: {e}")
            solution = None

        if solution is None:
            x, y, z = self._setpoint
            self._log.warning(f"No IK solution for setpoint ({x:.3f}, {y:.3f}, {z:.3f}), keeping previous joint references")
            self._mark_failure()
            return False

        self._joint_refs = np.asarray(solution, dtype=float).ravel()
        self._joint_refs_valid = True
        self._solve_failures = 0
        return True

    def _mark_failure(self):
        self._joint_refs_valid = False
        self._solve_failures += 1

    @property
    def joint_refs(self) -> np.ndarray:
        return self._joint_refs.copy()

    @property
    def joint_refs_valid(self) -> bool:
        return self._joint_refs_valid

    @property
    def consecutive_solve_failures(self) -> int:
        return self._solve_failures

    def to_dict(self) -> dict:
        return {
            "setpoint_m": [round(float(v), 4) for v in self._setpoint],
            "joint_refs_rad": [round(float(q), 4) for q in self._joint_refs],
            "joint_refs_valid": self._joint_refs_valid,
            "consecutive_solve_failures": self._solve_failures,
            "z_step_m": self.z_step,
        }
