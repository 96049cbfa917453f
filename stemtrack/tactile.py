"""
Tactile (whisker gripper) interpreter interface.

The interpreter turns raw whisker signals into two discrete events: the
nominal values have been calibrated, and the grasp whisker is touched.
"""

import threading
from abc import ABC, abstractmethod


class TactileInterpreter(ABC):
    @abstractmethod
    def is_calibrated(self) -> bool:
        """True once nominal whisker values have been obtained."""

    @abstractmethod
    def is_grasp_detected(self) -> bool:
        """True while the grasp whisker reports contact with the stem."""


class MockTactileInterpreter(TactileInterpreter):
    """Mock interpreter whose events are set by hand (tests, MCP tools)."""

    def __init__(self, calibrated: bool = False, grasp_detected: bool = False):
        self._lock = threading.Lock()
        self._calibrated = calibrated
        self._grasp_detected = grasp_detected

    def set(self, calibrated=None, grasp_detected=None):
        with self._lock:
            if calibrated is not None:
                self._calibrated = bool(calibrated)
            if grasp_detected is not None:
                self._grasp_detected = bool(grasp_detected)

    def is_calibrated(self) -> bool:
        with self._lock:
            return self._calibrated

    def is_grasp_detected(self) -> bool:
        with self._lock:
            return self._grasp_detected

    def to_dict(self) -> dict:
        return {
            "calibrated": self.is_calibrated(),
            "grasp_detected": self.is_grasp_detected(),
        }
