"""
quadricslam/geometry/aligned_box.py

Axis-aligned boxes in the image plane (AlignedBox2) and in the world (AlignedBox3).
Both are immutable value types; every operation returns a new object.
"""
from __future__ import annotations
from dataclasses import dataclass
from itertools import product
from typing import Optional
import numpy as np


@dataclass(frozen=True)
class AlignedBox2:
    """
    Image-space box, (xmin, ymin, xmax, ymax) in pixels.

    ---
    Attributes:
        xmin, ymin   top-left corner
        xmax, ymax   bottom-right corner
    """
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def __post_init__(self):
        for name in ('xmin', 'ymin', 'xmax', 'ymax'):
            object.__setattr__(self, name, float(getattr(self, name)))
        if self.xmin > self.xmax or self.ymin > self.ymax:
            raise ValueError(f"min corner must not exceed max corner: {self.vector()}")

    @classmethod
    def from_vector(cls, v) -> "AlignedBox2":
        """ Build from a 4-vector (xmin, ymin, xmax, ymax). """
        xmin, ymin, xmax, ymax = np.asarray(v, dtype=float).ravel()
        return cls(xmin, ymin, xmax, ymax)

    def vector(self) -> np.ndarray:
        return np.array([self.xmin, self.ymin, self.xmax, self.ymax])

    def min_point(self) -> np.ndarray:
        return np.array([self.xmin, self.ymin])

    def max_point(self) -> np.ndarray:
        return np.array([self.xmax, self.ymax])

    def width(self) -> float:
        return self.xmax - self.xmin

    def height(self) -> float:
        return self.ymax - self.ymin

    def center(self) -> np.ndarray:
        return 0.5 * (self.min_point() + self.max_point())

    def dimensions(self) -> np.ndarray:
        return self.max_point() - self.min_point()

    def area(self) -> float:
        return self.width() * self.height()

    def corners(self) -> np.ndarray:
        """ The 4 corners as a (4x2) array, ordered x-major: (min,min),(min,max),(max,min),(max,max). """
        return np.array(list(product((self.xmin, self.xmax), (self.ymin, self.ymax))))

    def contains(self, other) -> bool:
        """ True if a 2D point, or a whole box, lies inside this box (edges included). """
        if isinstance(other, AlignedBox2):
            return self.contains(other.min_point()) and self.contains(other.max_point())
        p = np.asarray(other, dtype=float)
        return bool(np.all(p >= self.min_point()) and np.all(p <= self.max_point()))

    def intersects(self, other: "AlignedBox2") -> bool:
        """ True if the boxes overlap or touch. """
        return not (other.xmin > self.xmax or other.xmax < self.xmin or
                    other.ymin > self.ymax or other.ymax < self.ymin)

    overlaps = intersects

    def intersection(self, other: "AlignedBox2") -> Optional["AlignedBox2"]:
        if not self.intersects(other):
            return None
        return AlignedBox2(max(self.xmin, other.xmin), max(self.ymin, other.ymin),
                           min(self.xmax, other.xmax), min(self.ymax, other.ymax))

    def iou(self, other: "AlignedBox2") -> float:
        """ Intersection-over-union, 0.0 for disjoint boxes. """
        inter = self.intersection(other)
        if inter is None:
            return 0.0
        union = self.area() + other.area() - inter.area()
        return inter.area() / union if union > 0 else 0.0

    def equals(self, other: "AlignedBox2", tol=1e-9) -> bool:
        return bool(np.allclose(self.vector(), other.vector(), rtol=0.0, atol=tol))


@dataclass(frozen=True)
class AlignedBox3:
    """
    World-space box, (xmin, ymin, zmin, xmax, ymax, zmax).
    """
    xmin: float
    ymin: float
    zmin: float
    xmax: float
    ymax: float
    zmax: float

    def __post_init__(self):
        for name in ('xmin', 'ymin', 'zmin', 'xmax', 'ymax', 'zmax'):
            object.__setattr__(self, name, float(getattr(self, name)))
        if np.any(self.min_point() > self.max_point()):
            raise ValueError(f"min corner must not exceed max corner: {self.vector()}")

    @classmethod
    def from_vector(cls, v) -> "AlignedBox3":
        """ Build from a 6-vector (xmin, ymin, zmin, xmax, ymax, zmax). """
        return cls(*np.asarray(v, dtype=float).ravel())

    def vector(self) -> np.ndarray:
        return np.array([self.xmin, self.ymin, self.zmin, self.xmax, self.ymax, self.zmax])

    def min_point(self) -> np.ndarray:
        return np.array([self.xmin, self.ymin, self.zmin])

    def max_point(self) -> np.ndarray:
        return np.array([self.xmax, self.ymax, self.zmax])

    def width(self) -> float:
        return self.xmax - self.xmin

    def height(self) -> float:
        return self.ymax - self.ymin

    def depth(self) -> float:
        return self.zmax - self.zmin

    def dimensions(self) -> np.ndarray:
        return self.max_point() - self.min_point()

    def centroid(self) -> np.ndarray:
        return 0.5 * (self.min_point() + self.max_point())

    def volume(self) -> float:
        return float(np.prod(self.dimensions()))

    def corners(self) -> np.ndarray:
        """ The 8 corners as an (8x3) array. """
        return np.array(list(product((self.xmin, self.xmax),
                                     (self.ymin, self.ymax),
                                     (self.zmin, self.zmax))))

    def contains(self, other) -> bool:
        if isinstance(other, AlignedBox3):
            return self.contains(other.min_point()) and self.contains(other.max_point())
        p = np.asarray(other, dtype=float)
        return bool(np.all(p >= self.min_point()) and np.all(p <= self.max_point()))

    def intersects(self, other: "AlignedBox3") -> bool:
        return bool(np.all(other.min_point() <= self.max_point()) and
                    np.all(other.max_point() >= self.min_point()))

    overlaps = intersects

    def intersection(self, other: "AlignedBox3") -> Optional["AlignedBox3"]:
        if not self.intersects(other):
            return None
        lo = np.maximum(self.min_point(), other.min_point())
        hi = np.minimum(self.max_point(), other.max_point())
        return AlignedBox3.from_vector(np.concatenate([lo, hi]))

    def iou(self, other: "AlignedBox3") -> float:
        inter = self.intersection(other)
        if inter is None:
            return 0.0
        union = self.volume() + other.volume() - inter.volume()
        return inter.volume() / union if union > 0 else 0.0

    def equals(self, other: "AlignedBox3", tol=1e-9) -> bool:
        return bool(np.allclose(self.vector(), other.vector(), rtol=0.0, atol=tol))
