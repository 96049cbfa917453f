"""
Kinematics solver interface and a mock solver for running without a robot model.

The real forward/inverse kinematics live outside this package. Anything that
implements ``KinematicsSolver`` can be plugged into the controller.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Pose:
    """Cartesian pose of the gripper in the robot base frame."""
    position: np.ndarray  # [x, y, z] meters
    orientation: np.ndarray = field(
        default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0])
    )  # quaternion [x, y, z, w]

    def to_dict(self) -> dict:
        return {
            "position_m": [float(v) for v in self.position],
            "orientation_xyzw": [float(v) for v in self.orientation],
        }


class KinematicsSolver(ABC):
    """Forward/inverse kinematics for the monitored chain (torso + arm)."""

    @abstractmethod
    def forward(self, joints: np.ndarray) -> Optional[Pose]:
        """Gripper pose for the given joint array, or None if the solver fails."""

    @abstractmethod
    def inverse(
        self,
        target: Pose,
        seed: np.ndarray,
        joint_limits: tuple[Sequence[float], Sequence[float]],
    ) -> Optional[np.ndarray]:
        """Joint array reaching ``target``, or None when the solver does not converge."""


class MockKinematics(KinematicsSolver):
    """
    Mock solver for testing without a robot model.

    Models a gantry-like chain: the torso lifts the gripper, arm joints 1 and 2
    move it in x and y. The remaining joints do not move the gripper and are kept
    from the seed on inverse solves.
    """

    BASE = np.array([0.4, 0.0, 0.8])
    REACH_PER_RAD = 0.5

    def __init__(self):
        self.fail_forward = False
        self.fail_inverse = False
        self.forward_calls = 0
        self.inverse_calls = 0

    def forward(self, joints: np.ndarray) -> Optional[Pose]:
        self.forward_calls += 1
        joints = np.asarray(joints, dtype=float)
        if self.fail_forward or joints.shape[0] < 3:
            return None
        position = self.BASE + np.array([
            self.REACH_PER_RAD * joints[1],
            self.REACH_PER_RAD * joints[2],
            joints[0],
        ])
        return Pose(position=position)

    def inverse(
        self,
        target: Pose,
        seed: np.ndarray,
        joint_limits: tuple[Sequence[float], Sequence[float]],
    ) -> Optional[np.ndarray]:
        self.inverse_calls += 1
        seed = np.asarray(seed, dtype=float)
        if self.fail_inverse or seed.shape[0] < 3:
            return None

        x, y, z = np.asarray(target.position, dtype=float) - self.BASE
        solution = seed.copy()
        solution[0] = z
        solution[1] = x / self.REACH_PER_RAD
        solution[2] = y / self.REACH_PER_RAD

        lower = np.asarray(joint_limits[0], dtype=float)
        upper = np.asarray(joint_limits[1], dtype=float)
        if lower.shape == solution.shape and upper.shape == solution.shape:
            if np.any(solution < lower) or np.any(solution > upper):
                logger.debug(f"Mock IK target {target.position} outside joint limits")
                return None
        return solution
