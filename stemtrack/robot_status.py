"""
Cached robot telemetry.

Joint measurements arrive asynchronously (torso and arm on separate
streams) and are merged into one fixed-size joint array: index 0 is the
torso, indices 1-7 are the arm chain of the configured side. The gripper
pose is derived on demand with the external forward kinematics.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np

from .kinematics import KinematicsSolver, Pose

logger = logging.getLogger(__name__)

TORSO_JOINT = "torso_joint"
ARM_JOINTS = (
    "shoulder_yaw_joint",
    "shoulder_pitch_joint",
    "shoulder_roll_joint",
    "elbow_pitch_joint",
    "elbow_roll_joint",
    "wrist_pitch_joint",
    "wrist_yaw_joint",
)
ARM_CHAIN_LENGTH = len(ARM_JOINTS)


@dataclass
class JointSnapshot:
    """Consistent copy of the joint cache, taken once per control tick."""
    joints: np.ndarray
    last_update: Optional[float]  # clock time of the last update, None if never updated
    taken_at: float
    up_to_date_threshold: float

    @property
    def age(self) -> float:
        if self.last_update is None:
            return float("inf")
        return self.taken_at - self.last_update

    @property
    def fresh(self) -> bool:
        return self.age < self.up_to_date_threshold


class RobotStatus:
    """
    Joint cache for the torso plus one arm.

    A non-positive joint count or an undetermined handedness leaves the
    object permanently inconsistent: ``self_check()`` is False and updates
    are logged no-ops.
    """

    def __init__(
        self,
        n_joints: int,
        handedness: Optional[str],
        solver: KinematicsSolver,
        up_to_date_threshold: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[logging.Logger] = None,
    ):
        self._log = log or logger
        self._solver = solver
        self._clock = clock
        self._lock = threading.Lock()

        self._n_joints = n_joints
        self._handedness = handedness
        self._joints = np.zeros(max(n_joints, 0))
        self._last_update: Optional[float] = None
        self._up_to_date_threshold = up_to_date_threshold
        self._gripper_xyz = np.empty(0)

        if n_joints <= 0:
            self._log.error(
                "trying to initialize robot status object with zero or negative number of joints to monitor!"
            )

        self._joint_names = [TORSO_JOINT]
        if handedness in ("left", "right"):
            self._joint_names += [f"{name}_{handedness}" for name in ARM_JOINTS]
        else:
            self._log.error(
                "trying to initialize robot status without knowing whether we use left or right arm"
            )

    @property
    def joint_names(self) -> list[str]:
        return list(self._joint_names)

    @property
    def n_joints(self) -> int:
        return self._n_joints

    def self_check(self) -> bool:
        ok = True
        if self._n_joints <= 0:
            self._log.warning(
                "trying to use robot status object while number of joints to monitor is zero or negative!"
            )
            ok = False
        if self._handedness not in ("left", "right"):
            self._log.warning("trying to use robot status object without a configured arm side!")
            ok = False
        return ok

    def update_torso(self, positions: Sequence[float]) -> bool:
        """Merge a torso measurement (first position) into index 0."""
        if not self.self_check():
            return False
        positions = np.asarray(positions, dtype=float).ravel()
        if positions.shape[0] < 1:
            self._log.warning("received torso joint state without positions, ignoring")
            return False

        with self._lock:
            self._joints[0] = positions[0]
            self._last_update = self._clock()
        return True

    def update_arm(self, positions: Sequence[float]) -> bool:
        """Merge an arm measurement (seven positions) into indices 1-7."""
        if not self.self_check():
            return False
        positions = np.asarray(positions, dtype=float).ravel()
        if positions.shape[0] < ARM_CHAIN_LENGTH:
            self._log.warning(
                f"received arm joint state with {positions.shape[0]} positions, "
                f"expected {ARM_CHAIN_LENGTH}, ignoring"
            )
            return False
        if self._n_joints < ARM_CHAIN_LENGTH + 1:
            self._log.warning(
                f"robot status monitors {self._n_joints} joints, too few for the arm chain, ignoring"
            )
            return False

        with self._lock:
            self._joints[1:ARM_CHAIN_LENGTH + 1] = positions[:ARM_CHAIN_LENGTH]
            self._last_update = self._clock()
        return True

    def joint_status(self) -> np.ndarray:
        with self._lock:
            return self._joints.copy()

    @property
    def last_update_time(self) -> Optional[float]:
        with self._lock:
            return self._last_update

    def set_up_to_date_threshold(self, threshold: float):
        self._up_to_date_threshold = threshold

    def time_since_last_update(self) -> float:
        """Seconds since the last successful update (inf if none yet)."""
        with self._lock:
            last_update = self._last_update
        if last_update is None:
            return float("inf")
        return self._clock() - last_update

    def is_fresh(self, threshold: float) -> bool:
        return self.time_since_last_update() < threshold

    def is_up_to_date(self) -> bool:
        return self.is_fresh(self._up_to_date_threshold)

    def snapshot(self) -> JointSnapshot:
        with self._lock:
            return JointSnapshot(
                joints=self._joints.copy(),
                last_update=self._last_update,
                taken_at=self._clock(),
                up_to_date_threshold=self._up_to_date_threshold,
            )

    def gripper_frame(self, joints: Optional[np.ndarray] = None) -> Optional[Pose]:
        """
        Gripper pose from forward kinematics.

        Args:
            joints: Joint array to solve for. Defaults to the cached joints.

        Returns:
            Pose, or None if the solver failed.
        """
        if joints is None:
            joints = self.joint_status()
        try:
            pose = self._solver.forward(joints)
        except Exception as e:
            self._log.warning(f"forward kinematics raised in gripper_frame: {e}")
            pose = None
        if pose is None:
            self._log.warning("something wrong in solving forward kinematics in gripper_frame")
        return pose

    def gripper_position(self, joints: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Gripper [x, y, z] from forward kinematics.

        Returns an empty array when the solver fails; check
        ``is_gripper_position_valid()`` or the array size before using it.
        """
        pose = self.gripper_frame(joints)
        if pose is None:
            xyz = np.empty(0)
        else:
            xyz = np.asarray(pose.position, dtype=float).ravel()[:3]
        with self._lock:
            self._gripper_xyz = xyz
        return xyz.copy()

    def is_gripper_position_valid(self) -> bool:
        with self._lock:
            return self._gripper_xyz.shape == (3,)

    def reached_position(
        self,
        joint_refs: Sequence[float],
        tolerance: float,
        joints: Optional[np.ndarray] = None,
    ) -> bool:
        """True if every monitored joint is within ``tolerance`` of ``joint_refs``."""
        if joints is None:
            joints = self.joint_status()
        refs = np.asarray(joint_refs, dtype=float).ravel()
        if refs.shape != joints.shape or refs.shape[0] == 0:
            self._log.warning(
                f"cannot compare {joints.shape[0]} joints against {refs.shape[0]} references"
            )
            return False
        return bool(np.max(np.abs(joints - refs)) < tolerance)

    def to_dict(self) -> dict:
        snapshot = self.snapshot()
        return {
            "joint_names": self.joint_names,
            "joint_positions_rad": [round(float(q), 4) for q in snapshot.joints],
            "seconds_since_update": None if snapshot.last_update is None else round(snapshot.age, 3),
            "up_to_date": snapshot.fresh,
            "self_consistent": self._n_joints > 0 and self._handedness in ("left", "right"),
        }
