"""
Geometric model of a plant stem.

The stem is an ordered 3D polyline whose z coordinates increase from the
first to the last node (assumption, not enforced). Perception replaces the
whole polyline on every update; the model answers interpolation and
nearest-point queries against it.

Queries never raise. When the polyline is not usable they log and return
None (or False for predicates).
"""

import logging
import threading
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class StemModel:
    """
    Ordered polyline approximating one tracked stem.

    Safe to update from a perception callback while the control loop reads
    it: every public method takes the model lock, and ``copy()`` gives the
    control loop a frozen view for the duration of one tick.
    """

    def __init__(self, stem_id: int = 0, log: Optional[logging.Logger] = None):
        self._stem_id = stem_id
        self._log = log or logger
        self._lock = threading.Lock()

        self._x = np.empty(0)
        self._y = np.empty(0)
        self._z = np.empty(0)
        self._nearest: Optional[np.ndarray] = None

    @property
    def stem_id(self) -> int:
        return self._stem_id

    @property
    def num_nodes(self) -> int:
        with self._lock:
            return int(self._z.shape[0])

    def nodes(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Copies of the x, y and z node sequences."""
        with self._lock:
            return self._x.copy(), self._y.copy(), self._z.copy()

    def last_node(self) -> Optional[np.ndarray]:
        with self._lock:
            if not self._self_check():
                return None
            return np.array([self._x[-1], self._y[-1], self._z[-1]])

    def load_nodes(self, xs: Sequence[float], ys: Sequence[float], zs: Sequence[float]) -> bool:
        """
        Replace the polyline with new nodes.

        Mismatched sequence lengths reject the load and keep the previous
        polyline. A successful load invalidates the cached nearest point.

        Returns:
            True if the nodes were loaded.
        """
        x = np.asarray(xs, dtype=float).ravel()
        y = np.asarray(ys, dtype=float).ravel()
        z = np.asarray(zs, dtype=float).ravel()

        if not (x.shape == y.shape == z.shape):
            self._log.error(
                f"Stem {self._stem_id}: node sequences differ in length "
                f"(x={x.shape[0]}, y={y.shape[0]}, z={z.shape[0]}), keeping previous nodes"
            )
            return False

        with self._lock:
            self._x, self._y, self._z = x, y, z
            self._nearest = None
        return True

    def reverse(self):
        """Reverse node order, for stems detected top-down."""
        with self._lock:
            self._x = self._x[::-1].copy()
            self._y = self._y[::-1].copy()
            self._z = self._z[::-1].copy()

    def self_check(self) -> bool:
        with self._lock:
            return self._self_check()

    def _self_check(self) -> bool:
        n = self._z.shape[0]
        return n > 0 and self._x.shape[0] == n and self._y.shape[0] == n

    def _points(self) -> np.ndarray:
        return np.column_stack([self._x, self._y, self._z])

    def position_at_z(self, z: float) -> Optional[np.ndarray]:
        """
        Point on the stem at height z.

        Interpolates x and y linearly between the two nodes bracketing z.
        Heights outside the node range clamp to the first or last node.

        Returns:
            [x, y, z] or None if the model holds no valid polyline.
        """
        with self._lock:
            if not self._self_check():
                self._log.warning(f"Stem {self._stem_id}: position_at_z on an empty stem model")
                return None
            z_min, z_max = self._z[0], self._z[-1]
            if z <= z_min:
                return np.array([self._x[0], self._y[0], z_min])
            if z >= z_max:
                return np.array([self._x[-1], self._y[-1], z_max])
            x = np.interp(z, self._z, self._x)
            y = np.interp(z, self._z, self._y)
            return np.array([x, y, float(z)])

    def tangent_at_z(self, z: float) -> Optional[np.ndarray]:
        """Unit direction of the segment bracketing z, or None with fewer than two nodes."""
        with self._lock:
            if not self._self_check() or self._z.shape[0] < 2:
                return None
            idx = int(np.clip(np.searchsorted(self._z, z), 1, self._z.shape[0] - 1))
            points = self._points()
            direction = points[idx] - points[idx - 1]
            length = np.linalg.norm(direction)
            if length == 0.0:
                return None
            return direction / length

    def _closest_point(self, point: np.ndarray) -> tuple[np.ndarray, float]:
        """Closest point on the polyline and its distance. Lock must be held."""
        points = self._points()
        if points.shape[0] == 1:
            return points[0].copy(), float(np.linalg.norm(point - points[0]))

        a = points[:-1]
        ab = points[1:] - a
        seg_len_sq = np.einsum("ij,ij->i", ab, ab)
        # Degenerate (zero-length) segments project onto their start node
        safe_len_sq = np.where(seg_len_sq > 0.0, seg_len_sq, 1.0)
        t = np.einsum("ij,ij->i", point - a, ab) / safe_len_sq
        t = np.clip(np.where(seg_len_sq > 0.0, t, 0.0), 0.0, 1.0)
        projections = a + t[:, np.newaxis] * ab
        distances = np.linalg.norm(projections - point, axis=1)
        best = int(np.argmin(distances))
        return projections[best], float(distances[best])

    @staticmethod
    def _as_point(point) -> Optional[np.ndarray]:
        p = np.asarray(point, dtype=float).ravel()
        if p.shape != (3,):
            return None
        return p

    def distance_to_stem(self, point) -> Optional[float]:
        p = self._as_point(point)
        if p is None:
            self._log.warning(f"Stem {self._stem_id}: expected a 3D point, got {np.size(point)} values")
            return None
        with self._lock:
            if not self._self_check():
                return None
            return self._closest_point(p)[1]

    def is_on_stem(self, point, tolerance: float) -> bool:
        """True if the point lies within ``tolerance`` of the nearest stem segment."""
        distance = self.distance_to_stem(point)
        if distance is None:
            return False
        return distance <= tolerance

    def update_nearest(self, from_point) -> bool:
        """
        Recompute the cached nearest stem point to ``from_point``.

        Returns:
            True if the nearest point is now valid.
        """
        p = self._as_point(from_point)
        if p is None:
            self._log.warning(
                f"Stem {self._stem_id}: cannot update nearest point from {np.size(from_point)} values"
            )
            return False
        with self._lock:
            if not self._self_check():
                self._log.warning(f"Stem {self._stem_id}: cannot update nearest point, stem model is empty")
                return False
            self._nearest = self._closest_point(p)[0]
            return True

    def nearest(self) -> Optional[np.ndarray]:
        """Cached nearest stem point, or None until ``update_nearest`` succeeds."""
        with self._lock:
            return None if self._nearest is None else self._nearest.copy()

    def copy(self) -> "StemModel":
        """Frozen copy (nodes and nearest point) for use within one control tick."""
        clone = StemModel(self._stem_id, log=self._log)
        with self._lock:
            clone._x, clone._y, clone._z = self._x.copy(), self._y.copy(), self._z.copy()
            clone._nearest = None if self._nearest is None else self._nearest.copy()
        return clone

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "stem_id": self._stem_id,
                "num_nodes": int(self._z.shape[0]),
                "nodes": self._points().round(4).tolist() if self._self_check() else [],
                "nearest": None if self._nearest is None else [round(float(v), 4) for v in self._nearest],
            }
