"""
Configuration for the stem-tracking controller.

Groups the arm description, control-loop rates and supervisor thresholds.
Defaults match the values the controller was tuned with on the real robot.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional

logger = logging.getLogger(__name__)

# Environment overrides
MOCK_MODE = os.environ.get("STEMTRACK_MOCK", "0") == "1"
CONFIG_PATH_ENV = "STEMTRACK_CONFIG"

HANDEDNESS_VALUES = ("left", "right")

# Torso + seven-joint arm chain
DEFAULT_JOINT_COUNT = 8


class ConfigError(ValueError):
    """Raised when a configuration update does not validate."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass
class ArmConfig:
    """Which arm we climb with and where its joints are allowed to go (radians)."""

    handedness: Optional[str] = "right"  # "left", "right" or None (undetermined)
    joint_count: int = DEFAULT_JOINT_COUNT

    joint_minima: list[float] = field(default_factory=lambda: [
        -0.20,  # torso lift (m)
        -3.00, -1.80, -3.00, -2.50, -3.00, -1.70, -3.00,
    ])
    joint_maxima: list[float] = field(default_factory=lambda: [
        0.60,
        3.00, 1.80, 3.00, 0.10, 3.00, 1.70, 3.00,
    ])

    # Pre-position pose, reached before calibrating the whiskers
    initial_pose: list[float] = field(default_factory=lambda: [
        0.10,
        0.0, -0.50, 0.0, -1.20, 0.0, 0.60, 0.0,
    ])
    reach_tolerance: float = 0.02  # rad, max per-joint error to count as arrived

    def is_handedness_known(self) -> bool:
        return self.handedness in HANDEDNESS_VALUES

    def joint_limits(self) -> tuple[list[float], list[float]]:
        return list(self.joint_minima), list(self.joint_maxima)

    def to_dict(self) -> dict:
        return {
            "handedness": self.handedness,
            "joint_count": self.joint_count,
            "joint_minima": self.joint_minima,
            "joint_maxima": self.joint_maxima,
            "initial_pose": self.initial_pose,
            "reach_tolerance": self.reach_tolerance,
        }


@dataclass
class ControlConfig:
    """Control loop rate and climbing speed."""

    max_z_velocity: float = 0.05  # m/s
    update_rate_hz: float = 10.0
    up_to_date_threshold: float = 0.5  # s, telemetry older than this is stale

    def to_dict(self) -> dict:
        return {
            "max_z_velocity_m_s": self.max_z_velocity,
            "update_rate_hz": self.update_rate_hz,
            "up_to_date_threshold_s": self.up_to_date_threshold,
        }


@dataclass
class SupervisorConfig:
    """Thresholds used by the phase supervisor."""

    completion_height: float = 1.3  # m, gripper z above which the task is done
    end_of_stem_tolerance: float = 0.05  # m
    on_stem_tolerance: float = 0.02  # m
    debug_state: bool = True  # log every phase change

    def to_dict(self) -> dict:
        return {
            "completion_height_m": self.completion_height,
            "end_of_stem_tolerance_m": self.end_of_stem_tolerance,
            "on_stem_tolerance_m": self.on_stem_tolerance,
            "debug_state": self.debug_state,
        }


@dataclass
class StemTrackConfig:
    """Complete controller configuration."""

    arm: ArmConfig = field(default_factory=ArmConfig)
    control: ControlConfig = field(default_factory=ControlConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)

    # Frame the visualization markers are expressed in
    base_frame: str = "base_link"

    def validate(self) -> list[str]:
        """
        Startup validation.

        Returns:
            List of error messages, empty when the configuration is usable.
        """
        errors = []
        if self.arm.joint_count != DEFAULT_JOINT_COUNT:
            errors.append(
                f"joint_count must be {DEFAULT_JOINT_COUNT} (torso plus seven arm joints), "
                f"got {self.arm.joint_count}"
            )
        if not self.arm.is_handedness_known():
            errors.append(f"handedness must be one of {HANDEDNESS_VALUES}, got {self.arm.handedness!r}")
        for name in ("joint_minima", "joint_maxima", "initial_pose"):
            values = getattr(self.arm, name)
            if len(values) != self.arm.joint_count:
                errors.append(f"{name} has {len(values)} entries, expected {self.arm.joint_count}")
        if self.control.update_rate_hz <= 0:
            errors.append(f"update_rate_hz must be positive, got {self.control.update_rate_hz}")
        if self.control.max_z_velocity < 0:
            errors.append(f"max_z_velocity must not be negative, got {self.control.max_z_velocity}")
        return errors

    def to_dict(self) -> dict:
        return {
            "arm": self.arm.to_dict(),
            "control": self.control.to_dict(),
            "supervisor": self.supervisor.to_dict(),
            "base_frame": self.base_frame,
        }

    def save(self, path: str):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> "StemTrackConfig":
        config = cls()
        arm = data.get("arm", {})
        for key in ("handedness", "joint_count", "joint_minima", "joint_maxima",
                    "initial_pose", "reach_tolerance"):
            if key in arm:
                setattr(config.arm, key, arm[key])

        control = data.get("control", {})
        if "max_z_velocity_m_s" in control:
            config.control.max_z_velocity = control["max_z_velocity_m_s"]
        if "update_rate_hz" in control:
            config.control.update_rate_hz = control["update_rate_hz"]
        if "up_to_date_threshold_s" in control:
            config.control.up_to_date_threshold = control["up_to_date_threshold_s"]

        supervisor = data.get("supervisor", {})
        if "completion_height_m" in supervisor:
            config.supervisor.completion_height = supervisor["completion_height_m"]
        if "end_of_stem_tolerance_m" in supervisor:
            config.supervisor.end_of_stem_tolerance = supervisor["end_of_stem_tolerance_m"]
        if "on_stem_tolerance_m" in supervisor:
            config.supervisor.on_stem_tolerance = supervisor["on_stem_tolerance_m"]
        if "debug_state" in supervisor:
            config.supervisor.debug_state = supervisor["debug_state"]

        if "base_frame" in data:
            config.base_frame = data["base_frame"]
        return config

    @classmethod
    def load(cls, path: str) -> "StemTrackConfig":
        """Load configuration from a JSON file."""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)


def _initial_config() -> StemTrackConfig:
    path = os.environ.get(CONFIG_PATH_ENV)
    if path:
        try:
            config = StemTrackConfig.load(path)
            logger.info(f"Loaded stemtrack config from {path}")
            return config
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load config {path}: {e}, using defaults")
    return StemTrackConfig()


# Singleton default config
_default_config = _initial_config()


def get_config() -> StemTrackConfig:
    return _default_config


def _changed(section, values: Optional[dict], name: str) -> dict:
    changes = {}
    for key, value in (values or {}).items():
        if hasattr(section, key):
            changes[key] = value
        else:
            logger.warning(f"Ignoring unknown {name} setting {key!r}")
    return changes


def update_config(
    control: Optional[dict] = None,
    supervisor: Optional[dict] = None,
) -> StemTrackConfig:
    """
    Update the global configuration.

    The new settings are validated on a copy first and only applied when
    the result is valid.

    Raises:
        ConfigError: if the updated configuration does not validate. The
            global configuration is left untouched.
    """
    candidate = replace(
        _default_config,
        control=replace(_default_config.control, **_changed(_default_config.control, control, "control")),
        supervisor=replace(
            _default_config.supervisor, **_changed(_default_config.supervisor, supervisor, "supervisor"),
        ),
    )
    errors = candidate.validate()
    if errors:
        raise ConfigError(errors)

    # Apply in place, the node holds references to these objects
    for section in ("control", "supervisor"):
        live = getattr(_default_config, section)
        for f in fields(live):
            setattr(live, f.name, getattr(getattr(candidate, section), f.name))

    return _default_config
