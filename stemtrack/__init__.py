from .config import (
    ArmConfig,
    ControlConfig,
    SupervisorConfig,
    StemTrackConfig,
    ConfigError,
    get_config,
    update_config,
)

from .kinematics import (
    Pose,
    KinematicsSolver,
    MockKinematics,
)

from .tactile import (
    TactileInterpreter,
    MockTactileInterpreter,
)

from .stem_model import StemModel

from .robot_status import (
    JointSnapshot,
    RobotStatus,
    ARM_JOINTS,
    TORSO_JOINT,
)

from .visualization import (
    Marker,
    MarkerBuffer,
    MarkerID,
    MarkerStyle,
    MARKER_STYLES,
    VisualizationInterface,
)

__all__ = [
    # Configuration
    "ArmConfig",
    "ControlConfig",
    "SupervisorConfig",
    "StemTrackConfig",
    "ConfigError",
    "get_config",
    "update_config",
    # Kinematics
    "Pose",
    "KinematicsSolver",
    "MockKinematics",
    # Tactile
    "TactileInterpreter",
    "MockTactileInterpreter",
    # Stem geometry
    "StemModel",
    # Telemetry
    "JointSnapshot",
    "RobotStatus",
    "ARM_JOINTS",
    "TORSO_JOINT",
    # Visualization
    "Marker",
    "MarkerBuffer",
    "MarkerID",
    "MarkerStyle",
    "MARKER_STYLES",
    "VisualizationInterface",
]
