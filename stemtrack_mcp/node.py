"""
Stem-tracking node: owns the controller components and runs the control tick.

Sensor callbacks (joint states, stem perception, whisker events) write into
the telemetry cache, stem model and tactile interpreter from their own
threads. The tick takes one snapshot of all of them, decides the phase and,
while following the stem, computes the next setpoint and joint references
from that same snapshot.

Usage:
    node = StemTrackNode(config, solver, tactile)
    node.start()          # background loop at config.control.update_rate_hz
    node.on_arm_state(q)  # from the joint-state subscriber
    ...
    node.stop()
"""

import importlib
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

from stemtrack.config import MOCK_MODE, StemTrackConfig, get_config
from stemtrack.kinematics import KinematicsSolver, MockKinematics
from stemtrack.robot_status import RobotStatus
from stemtrack.stem_model import StemModel
from stemtrack.tactile import MockTactileInterpreter, TactileInterpreter
from stemtrack.visualization import Marker, MarkerBuffer, MarkerID, VisualizationInterface

from .controller import StemTrackController
from .monitor import Phase, StemTrackMonitor, TickSnapshot

logger = logging.getLogger(__name__)

# Consecutive tick exceptions before the background loop gives up
CONSECUTIVE_ERROR_LIMIT = 20


@dataclass
class TickResult:
    """Outcome of one control tick."""
    tick: int
    phase: Phase
    previous_phase: Phase
    fresh: bool
    gripper_position: list[float] = field(default_factory=list)
    setpoint: Optional[list[float]] = None
    joint_refs: Optional[list[float]] = None
    joint_refs_valid: bool = False
    end_of_stem: Optional[bool] = None
    on_stem: Optional[bool] = None
    error: Optional[str] = None

    @property
    def actuate(self) -> bool:
        """Whether the joint references may be sent to the robot this tick."""
        return (
            self.error is None
            and self.phase is Phase.FOLLOW
            and self.fresh
            and self.joint_refs_valid
        )

    def to_dict(self) -> dict:
        return {
            "tick": self.tick,
            "phase": self.phase.value,
            "previous_phase": self.previous_phase.value,
            "fresh": self.fresh,
            "gripper_position_m": self.gripper_position,
            "setpoint_m": self.setpoint,
            "joint_refs_rad": self.joint_refs,
            "joint_refs_valid": self.joint_refs_valid,
            "end_of_stem": self.end_of_stem,
            "on_stem": self.on_stem,
            "actuate": self.actuate,
            "error": self.error,
        }


def _rounded(values) -> list[float]:
    return [round(float(v), 4) for v in values]


class StemTrackNode:
    """Owning context for one stem-tracking session."""

    def __init__(
        self,
        config: StemTrackConfig,
        solver: KinematicsSolver,
        tactile: TactileInterpreter,
        sink: Optional[Callable[[Marker], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[logging.Logger] = None,
    ):
        self.config = config
        self._log = log or logger
        self._solver = solver
        self._tactile = tactile

        for error in config.validate():
            self._log.error(f"Invalid stemtrack configuration: {error}")

        self.robot_status = RobotStatus(
            config.arm.joint_count,
            config.arm.handedness,
            solver,
            up_to_date_threshold=config.control.up_to_date_threshold,
            clock=clock,
            log=log,
        )
        self.stem = StemModel(stem_id=0, log=log)
        self.controller = StemTrackController(
            self.robot_status,
            solver,
            max_z_velocity=config.control.max_z_velocity,
            update_rate_hz=config.control.update_rate_hz,
            log=log,
        )
        self.monitor = StemTrackMonitor(self.robot_status, config.arm, config.supervisor, log=log)

        self.markers = MarkerBuffer()
        self.visualization = VisualizationInterface(
            sink or self.markers, base_frame=config.base_frame, log=log,
        )

        # Serializes ticks from the background loop and from direct calls
        self._tick_lock = threading.Lock()
        self._tick_count = 0
        self._last_result: Optional[TickResult] = None
        self._consecutive_errors = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def tactile(self) -> TactileInterpreter:
        return self._tactile

    # Sensor callbacks

    def on_torso_state(self, positions: Sequence[float]) -> bool:
        return self.robot_status.update_torso(positions)

    def on_arm_state(self, positions: Sequence[float]) -> bool:
        return self.robot_status.update_arm(positions)

    def on_stem_nodes(
        self,
        xs: Sequence[float],
        ys: Sequence[float],
        zs: Sequence[float],
        flip: bool = False,
    ) -> bool:
        """New stem estimate from perception; ``flip`` for top-down node order."""
        if not self.stem.load_nodes(xs, ys, zs):
            return False
        if flip:
            self.stem.reverse()
        x, y, z = self.stem.nodes()
        self.visualization.show_line_strip(x, y, z, MarkerID.STEM)
        return True

    def on_whisker_force(self, force: Sequence[float]) -> bool:
        """Show the net whisker force acting on the gripper."""
        gripper = self.robot_status.gripper_position()
        if gripper.shape != (3,):
            return False
        return self.visualization.show_arrow(force, gripper, MarkerID.WHISKER_NET_FORCE)

    def new_stem(self, stem_id: int):
        """Start tracking a different stem; the previous model is discarded."""
        self.stem = StemModel(stem_id=stem_id, log=self._log)

    # Control tick

    def _snapshot(self) -> TickSnapshot:
        joints = self.robot_status.snapshot()
        pose = self.robot_status.gripper_frame(joints.joints)
        gripper = np.empty(0) if pose is None else np.asarray(pose.position, dtype=float).ravel()[:3]

        stem_model = self.stem
        if gripper.shape == (3,) and stem_model.self_check():
            stem_model.update_nearest(gripper)
        stem = stem_model.copy()

        return TickSnapshot(
            joints=joints.joints,
            gripper_position=gripper,
            gripper_orientation=None if pose is None else pose.orientation,
            stem=stem,
            calibrated=bool(self._tactile.is_calibrated()),
            grasp_detected=bool(self._tactile.is_grasp_detected()),
            fresh=joints.fresh,
        )

    def _lateral_error(self, snapshot: TickSnapshot) -> np.ndarray:
        """Gripper (x, y) minus the stem (x, y) at gripper height; zero if the stem is unknown."""
        on_stem = snapshot.stem.position_at_z(float(snapshot.gripper_position[2]))
        if on_stem is None:
            return np.zeros(2)
        return snapshot.gripper_position[:2] - on_stem[:2]

    def tick(self) -> TickResult:
        """Run one control cycle."""
        with self._tick_lock:
            self._tick_count += 1
            try:
                result = self._tick()
                self._consecutive_errors = 0
            except Exception as e:
                self._consecutive_errors += 1
                self._log.exception(f"Stemtrack tick {self._tick_count} failed")
                result = TickResult(
                    tick=self._tick_count,
                    phase=self.monitor.state,
                    previous_phase=self.monitor.previous_state,
                    fresh=False,
                    error=str(e),
                )
            self._last_result = result
            return result

    def _tick(self) -> TickResult:
        snapshot = self._snapshot()
        if not snapshot.fresh:
            self._log.debug(f"Telemetry is stale on tick {self._tick_count}")

        phase = self.monitor.update_state(snapshot)
        result = TickResult(
            tick=self._tick_count,
            phase=phase,
            previous_phase=self.monitor.previous_state,
            fresh=snapshot.fresh,
            gripper_position=_rounded(snapshot.gripper_position),
        )

        if snapshot.gripper_valid and snapshot.stem.self_check():
            result.on_stem = snapshot.stem.is_on_stem(
                snapshot.gripper_position, self.config.supervisor.on_stem_tolerance,
            )

        if phase is Phase.FOLLOW and snapshot.gripper_valid:
            end_of_stem = self.monitor.reached_end_of_stem(snapshot.stem)
            result.end_of_stem = end_of_stem
            # Hold height once the nearest stem point is at the top node
            up = 0 if end_of_stem else 1

            self.controller.update_setpoint(snapshot.gripper_position, self._lateral_error(snapshot), up)
            self.controller.solve_joint_references(
                snapshot.joints,
                self.config.arm.joint_limits(),
                orientation=snapshot.gripper_orientation,
            )
            result.setpoint = _rounded(self.controller.setpoint)
            result.joint_refs = _rounded(self.controller.joint_refs)
            result.joint_refs_valid = self.controller.joint_refs_valid

        self._publish_markers(snapshot)
        return result

    def _publish_markers(self, snapshot: TickSnapshot):
        if snapshot.gripper_valid:
            self.visualization.show_xyz(snapshot.gripper_position, MarkerID.GRIPPER_CENTER)
        nearest = snapshot.stem.nearest()
        if nearest is not None:
            self.visualization.show_xyz(nearest, MarkerID.NEAREST_STEM_INTERSECTION)
            tangent = snapshot.stem.tangent_at_z(float(nearest[2]))
            if tangent is not None:
                self.visualization.show_arrow(0.1 * tangent, nearest, MarkerID.STEM_TANGENT)

    # Background loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> dict:
        """Start ticking at the configured update rate."""
        if self.running:
            return {"success": False, "error": "Control loop already running"}

        rate = self.config.control.update_rate_hz
        if rate <= 0:
            self._log.error(f"Refusing to start control loop with update rate {rate} Hz")
            return {"success": False, "error": f"update rate must be positive, got {rate}"}

        self._stop_event.clear()
        self._consecutive_errors = 0
        self._thread = threading.Thread(target=self._control_loop, args=(1.0 / rate,), daemon=True)
        self._thread.start()
        self._log.info(f"Stemtrack control loop started at {rate} Hz")
        return {"success": True, "message": "Control loop started"}

    def stop(self) -> dict:
        """Stop the control loop."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2.0)
        self._thread = None
        self._log.info(f"Stemtrack control loop stopped after {self._tick_count} ticks")
        return {"success": True, "ticks": self._tick_count, "phase": self.monitor.state.value}

    def _control_loop(self, interval: float):
        while not self._stop_event.is_set():
            loop_start = time.monotonic()

            result = self.tick()
            if result.phase is Phase.END:
                self._log.info("Task complete, stopping control loop")
                break
            if self._consecutive_errors >= CONSECUTIVE_ERROR_LIMIT:
                self._log.error(f"{self._consecutive_errors} consecutive tick failures, stopping control loop")
                break

            elapsed = time.monotonic() - loop_start
            self._stop_event.wait(max(0.0, interval - elapsed))

    def get_status(self) -> dict:
        return {
            "running": self.running,
            "ticks": self._tick_count,
            "consecutive_errors": self._consecutive_errors,
            "supervisor": self.monitor.to_dict(),
            "robot": self.robot_status.to_dict(),
            "stem": self.stem.to_dict(),
            "controller": self.controller.to_dict(),
            "last_tick": self._last_result.to_dict() if self._last_result else None,
        }


def _load_object(path: str):
    """Instantiate ``package.module:ClassName``."""
    module_name, _, attr = path.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, attr)()


def create_node(config: Optional[StemTrackConfig] = None) -> StemTrackNode:
    """
    Build a node with the configured collaborators.

    STEMTRACK_SOLVER and STEMTRACK_TACTILE name ``module:Class`` factories for
    the kinematics solver and whisker interpreter. Mock collaborators are used
    in mock mode or when none are configured.
    """
    config = config or get_config()
    solver_path = os.environ.get("STEMTRACK_SOLVER")
    tactile_path = os.environ.get("STEMTRACK_TACTILE")

    if MOCK_MODE or not solver_path:
        if not MOCK_MODE:
            logger.warning("STEMTRACK_SOLVER not set, running with mock kinematics")
        solver = MockKinematics()
    else:
        solver = _load_object(solver_path)

    if MOCK_MODE or not tactile_path:
        tactile = MockTactileInterpreter()
    else:
        tactile = _load_object(tactile_path)

    return StemTrackNode(config, solver, tactile)


# Global node instance
_node: Optional[StemTrackNode] = None


def get_node() -> StemTrackNode:
    global _node
    if _node is None:
        _node = create_node()
    return _node
