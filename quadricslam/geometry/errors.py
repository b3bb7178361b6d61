"""
quadricslam/geometry/errors.py

Exceptions raised by the quadric geometry.
InvalidShape is fatal to the construction that raised it; the projection
errors describe transient variable states and are absorbed by the factor.
"""


class QuadricError(Exception):
    """Base class for every error raised by quadricslam."""


class InvalidShape(QuadricError, ValueError):
    """Radii are not strictly positive, or a matrix cannot be constrained to an ellipsoid."""


class QuadricProjectionError(QuadricError):
    """The quadric cannot be projected into a proper image ellipse."""


class BehindCamera(QuadricProjectionError):
    """Quadric centroid has non-positive depth in the camera frame."""


class CameraInsideQuadric(QuadricProjectionError):
    """Camera centre lies inside (or on) the ellipsoid."""


class DegenerateConic(QuadricProjectionError):
    """Projected dual conic is not a proper (real, bounded) ellipse."""
