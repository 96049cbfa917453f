"""
Phase supervisor for the grasp-and-climb task.

Sequences INIT -> PREPOS -> CALIBRATE -> GRASP -> FOLLOW -> END, evaluated
once per control tick against a snapshot of the robot, the stem and the
whisker interpreter.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from stemtrack.config import ArmConfig, SupervisorConfig
from stemtrack.robot_status import RobotStatus
from stemtrack.stem_model import StemModel

logger = logging.getLogger(__name__)

BANNER = "============================================="


class Phase(Enum):
    INIT = "INIT"
    PREPOS = "PREPOS"
    CALIBRATE = "CALIBRATE"
    GRASP = "GRASP"
    FOLLOW = "FOLLOW"
    LOST = "LOST"
    END = "END"
    SIDEBRANCH = "SIDEBRANCH"
    ERROR = "ERROR"

    def __str__(self) -> str:
        return self.value


@dataclass
class TickSnapshot:
    """Everything the supervisor may look at during one tick."""
    joints: np.ndarray
    gripper_position: np.ndarray  # empty if forward kinematics failed
    stem: StemModel  # frozen copy, see StemModel.copy()
    calibrated: bool
    grasp_detected: bool
    fresh: bool = True
    gripper_orientation: Optional[np.ndarray] = None  # quaternion [x, y, z, w]

    @property
    def gripper_valid(self) -> bool:
        return self.gripper_position.shape == (3,)


class StemTrackMonitor:
    """
    Finite-state machine over ``Phase``.

    LOST, SIDEBRANCH and ERROR are part of the phase set but no guard
    leads into or out of them.
    """

    def __init__(
        self,
        robot_status: RobotStatus,
        arm_config: ArmConfig,
        config: SupervisorConfig,
        log: Optional[logging.Logger] = None,
    ):
        self._robot_status = robot_status
        self._arm_config = arm_config
        self.config = config
        self._log = log or logger

        self._state = Phase.INIT
        self._state_prev = Phase.INIT

    @property
    def state(self) -> Phase:
        return self._state

    @property
    def previous_state(self) -> Phase:
        return self._state_prev

    def reset(self):
        self._state = Phase.INIT
        self._state_prev = Phase.INIT

    @staticmethod
    def state_to_string(state) -> str:
        if isinstance(state, Phase):
            return state.value
        logger.warning("Unknown state in StemTrackMonitor.state_to_string!")
        return "UNKNOWN STATE!"

    def reached_end_of_stem(self, stem: StemModel) -> Optional[bool]:
        """
        Whether the nearest stem point is at the top node.

        Returns:
            True/False, or None (undetermined) when the nearest stem point
            has not been computed or the stem is empty.
        """
        nearest = stem.nearest()
        last_node = stem.last_node()
        if nearest is None or nearest.shape != (3,) or last_node is None:
            self._log.error("Trying to check for end of stem while stem-intersection is not known!")
            return None
        return bool(abs(nearest[2] - last_node[2]) < self.config.end_of_stem_tolerance)

    def _announce(self, message: str):
        self._log.info(BANNER)
        self._log.info(f"==> {message}")

    def update_state(self, snapshot: TickSnapshot) -> Phase:
        """Evaluate the transition guards once and return the (new) phase."""
        state_prev = self._state
        state = self._state

        if state is Phase.INIT:
            state = Phase.PREPOS

        elif state is Phase.PREPOS:
            if self._robot_status.reached_position(
                self._arm_config.initial_pose,
                self._arm_config.reach_tolerance,
                joints=snapshot.joints,
            ):
                state = Phase.CALIBRATE
                self._announce("Arrived at my pre position, going to calibrate now")

        elif state is Phase.CALIBRATE:
            if snapshot.calibrated:
                state = Phase.GRASP
                self._announce("Obtained nominal whisker values, going to grasp the stem now")

        elif state is Phase.GRASP:
            if snapshot.grasp_detected:
                state = Phase.FOLLOW
                self._announce("I have the stem, going to move up now")

        elif state is Phase.FOLLOW:
            if not snapshot.gripper_valid:
                self._log.warning("Gripper position unknown, staying in FOLLOW")
            elif snapshot.gripper_position[2] > self.config.completion_height:
                state = Phase.END
                self._announce("I am done with my task")

        elif state in (Phase.END, Phase.LOST, Phase.SIDEBRANCH, Phase.ERROR):
            pass

        else:
            self._log.warning(f"Unknown state {state!r} in update_state, holding")

        self._state_prev = state_prev
        self._state = state

        if self.config.debug_state and state != state_prev:
            self._log.info(
                f"In stemtrack monitor, state was: {self.state_to_string(state_prev)} "
                f"now set to: {self.state_to_string(state)}."
            )
        return state

    def to_dict(self) -> dict:
        return {
            "state": self._state.value,
            "previous_state": self._state_prev.value,
        }
