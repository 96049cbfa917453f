"""
Operator visualization geometry.

Builds plain marker descriptions (spheres, line strips, arrows) for the stem,
the gripper, the nearest stem point and whisker forces. A sink callable
receives each marker; how it is rendered or transported is up to the host.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class MarkerID(IntEnum):
    GRIPPER_CENTER = 0
    WHISKER_NET_FORCE = 1
    NEAREST_STEM_INTERSECTION = 2
    STEM = 3
    STEM_TANGENT = 4


@dataclass(frozen=True)
class MarkerStyle:
    name: str
    rgb: tuple[float, float, float]
    sphere_radius: float = 0.015  # meters
    linestrip_diam: float = 0.02
    arrow_diam: float = 0.01
    arrowhead_diam: float = 0.02


MARKER_STYLES = {
    MarkerID.GRIPPER_CENTER: MarkerStyle("gripper_center", (1.0, 0.0, 0.0)),
    MarkerID.WHISKER_NET_FORCE: MarkerStyle("whisker_force", (0.0, 0.0, 1.0)),
    MarkerID.NEAREST_STEM_INTERSECTION: MarkerStyle("nearest_stem_intersection", (0.0, 1.0, 0.0)),
    MarkerID.STEM: MarkerStyle("stem", (0.05, 0.65, 0.35)),
    MarkerID.STEM_TANGENT: MarkerStyle("stem_tangent", (1.0, 0.0, 0.0)),
}


@dataclass
class Marker:
    """A single piece of geometry to display."""
    marker_id: int
    ns: str
    kind: str  # "sphere", "line_strip" or "arrow"
    frame: str
    rgb: tuple[float, float, float]
    scale: tuple[float, ...]
    points: list[tuple[float, float, float]] = field(default_factory=list)
    stamp: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.marker_id,
            "ns": self.ns,
            "type": self.kind,
            "frame": self.frame,
            "rgb": list(self.rgb),
            "scale": list(self.scale),
            "points": [list(p) for p in self.points],
        }


class MarkerBuffer:
    """Sink that keeps the latest marker per id, for polling clients."""

    def __init__(self):
        self._lock = threading.Lock()
        self._markers: dict[int, Marker] = {}

    def __call__(self, marker: Marker):
        with self._lock:
            self._markers[marker.marker_id] = marker

    def latest(self) -> list[Marker]:
        with self._lock:
            return [self._markers[k] for k in sorted(self._markers)]

    def clear(self):
        with self._lock:
            self._markers.clear()


def _as_xyz(values) -> Optional[tuple[float, float, float]]:
    arr = np.asarray(values, dtype=float).ravel()
    if arr.shape != (3,):
        return None
    return (float(arr[0]), float(arr[1]), float(arr[2]))


class VisualizationInterface:
    """Turns stem-tracking geometry into markers and hands them to a sink."""

    def __init__(
        self,
        sink: Callable[[Marker], None],
        base_frame: str = "base_link",
        log: Optional[logging.Logger] = None,
    ):
        self._sink = sink
        self._base_frame = base_frame
        self._log = log or logger

    def configure_self(self, marker_id) -> Optional[MarkerStyle]:
        try:
            return MARKER_STYLES[MarkerID(marker_id)]
        except ValueError:
            self._log.info("Unknown marker id in visualization interface!")
            return None

    def _publish(self, marker: Marker):
        marker.stamp = time.time()
        self._sink(marker)

    def show_line_strip(
        self,
        xs: Sequence[float],
        ys: Sequence[float],
        zs: Sequence[float],
        marker_id=MarkerID.STEM,
    ) -> bool:
        style = self.configure_self(marker_id)
        if style is None:
            return False
        if not (len(xs) == len(ys) == len(zs)):
            self._log.info("line strip coordinates differ in length in show_line_strip")
            return False

        points = [(float(x), float(y), float(z)) for x, y, z in zip(xs, ys, zs)]
        self._publish(Marker(
            marker_id=int(marker_id),
            ns=style.name,
            kind="line_strip",
            frame=self._base_frame,
            rgb=style.rgb,
            scale=(style.linestrip_diam,),
            points=points,
        ))
        return True

    def show_xyz(self, xyz, marker_id=MarkerID.GRIPPER_CENTER) -> bool:
        point = _as_xyz(xyz)
        if point is None:
            self._log.info("unknown position vector in show_xyz")
            return False
        style = self.configure_self(marker_id)
        if style is None:
            return False

        self._publish(Marker(
            marker_id=int(marker_id),
            ns=style.name,
            kind="sphere",
            frame=self._base_frame,
            rgb=style.rgb,
            scale=(style.sphere_radius,) * 3,
            points=[point],
        ))
        return True

    def show_arrow(self, vector, origin, marker_id=MarkerID.WHISKER_NET_FORCE) -> bool:
        """Arrow ending at ``origin``, pointing along ``vector`` (e.g. a force acting on the gripper)."""
        v = _as_xyz(vector)
        if v is None:
            self._log.info("unknown force vector in show_arrow")
            return False
        o = _as_xyz(origin)
        if o is None:
            self._log.info("unknown origin vector in show_arrow")
            return False
        style = self.configure_self(marker_id)
        if style is None:
            return False

        start = (o[0] - v[0], o[1] - v[1], o[2] - v[2])
        self._publish(Marker(
            marker_id=int(marker_id),
            ns=style.name,
            kind="arrow",
            frame=self._base_frame,
            rgb=style.rgb,
            scale=(style.arrow_diam, style.arrowhead_diam),
            points=[start, o],
        ))
        return True
