"""
Shared fixtures: a fixed calibration and seeded random scenes in which the
quadric is always in front of the camera and the camera is always outside it.
"""
import numpy as np
import gtsam
import pytest

from quadricslam.geometry.constrained_dual_quadric import ConstrainedDualQuadric
from quadricslam.utils.graph_utils import look_at_pose


@pytest.fixture
def calibration():
    return gtsam.Cal3_S2(525.0, 525.0, 0.0, 320.0, 240.0)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def random_quadric(rng) -> ConstrainedDualQuadric:
    """ Ellipsoid near the origin with radii in [0.2, 1.0]. """
    rot = gtsam.Rot3.RzRyRx(*rng.uniform(-np.pi, np.pi, 3))
    centroid = gtsam.Point3(*rng.uniform(-0.5, 0.5, 3))
    return ConstrainedDualQuadric(gtsam.Pose3(rot, centroid), rng.uniform(0.2, 1.0, 3))


def random_camera(rng, quadric: ConstrainedDualQuadric) -> gtsam.Pose3:
    """ Camera 5-9 m away looking (roughly) at the quadric centroid. """
    direction = rng.normal(size=3)
    direction /= np.linalg.norm(direction)
    eye = quadric.centroid() + rng.uniform(5.0, 9.0) * direction
    target = quadric.centroid() + rng.uniform(-0.3, 0.3, 3)
    up = np.cross(direction, rng.normal(size=3))   # any vector not parallel to the view axis
    return look_at_pose(eye, target, up)


@pytest.fixture
def scenes(rng):
    """ 20 random (quadric, camera pose) pairs. """
    out = []
    for _ in range(20):
        q = random_quadric(rng)
        out.append((q, random_camera(rng, q)))
    return out


def assert_jacobians_close(analytic, numeric, rtol=1e-5):
    """ Compare an analytic Jacobian to central differences, scale-aware. """
    atol = rtol * max(1.0, np.abs(analytic).max())
    np.testing.assert_allclose(analytic, numeric, rtol=rtol, atol=atol)
