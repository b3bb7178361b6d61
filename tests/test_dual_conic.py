import numpy as np
import pytest

from conftest import assert_jacobians_close
from quadricslam.geometry.aligned_box import AlignedBox2
from quadricslam.geometry.dual_conic import DualConic
from quadricslam.geometry.errors import DegenerateConic
from quadricslam.geometry.quadric_camera import QuadricCamera
from quadricslam.utils.utils import numerical_jacobian


def circle(cx, cy, r) -> DualConic:
    """ Dual of the point conic (x-cx)^2 + (y-cy)^2 - r^2 = 0. """
    A = np.array([[1.0, 0.0, -cx],
                  [0.0, 1.0, -cy],
                  [-cx, -cy, cx ** 2 + cy ** 2 - r ** 2]])
    return DualConic(np.linalg.inv(A))


def test_default_unit_circle_bounds():
    conic = DualConic()
    assert conic.is_ellipse()
    assert conic.bounds().equals(AlignedBox2(-1, -1, 1, 1))


def test_circle_bounds_closed_form():
    assert circle(320.0, 240.0, 50.0).bounds().equals(AlignedBox2(270, 190, 370, 290), tol=1e-6)


def test_bounds_do_not_depend_on_scale_or_sign():
    conic = circle(100.0, 80.0, 20.0)
    for k in (-5.0, 0.01, 300.0):
        scaled = DualConic(k * conic.matrix())
        assert scaled.is_ellipse()
        assert scaled.bounds().equals(conic.bounds(), tol=1e-6)


def test_rotated_ellipse_bounds():
    """Ellipse with semi-axes (a, b) rotated by theta: half-width sqrt(a^2 cos^2 + b^2 sin^2)."""
    a, b, theta, cx, cy = 40.0, 10.0, 0.4, 200.0, 150.0
    R = np.array([[np.cos(theta), -np.sin(theta), cx],
                  [np.sin(theta),  np.cos(theta), cy],
                  [0.0, 0.0, 1.0]])
    C = R @ np.diag([a ** 2, b ** 2, -1.0]) @ R.T
    half_w = np.sqrt(a ** 2 * np.cos(theta) ** 2 + b ** 2 * np.sin(theta) ** 2)
    half_h = np.sqrt(a ** 2 * np.sin(theta) ** 2 + b ** 2 * np.cos(theta) ** 2)
    expected = AlignedBox2(cx - half_w, cy - half_h, cx + half_w, cy + half_h)
    assert DualConic(C).bounds().equals(expected, tol=1e-8)


@pytest.mark.parametrize("point_conic", [
    np.diag([1.0, -1.0, -1.0]),   # hyperbola
    np.diag([1.0, 1.0, 1.0]),     # imaginary ellipse
])
def test_improper_conics_are_rejected(point_conic):
    conic = DualConic(np.linalg.inv(point_conic))
    assert not conic.is_ellipse()
    with pytest.raises(DegenerateConic):
        conic.bounds()


def test_singular_conic_is_degenerate():
    conic = DualConic(np.diag([1.0, 1.0, 0.0]))
    assert conic.is_degenerate()
    assert not conic.is_ellipse()
    with pytest.raises(DegenerateConic):
        conic.bounds()


def test_rejects_wrong_shape():
    with pytest.raises(ValueError):
        DualConic(np.eye(4))


def test_contains():
    conic = circle(10.0, 10.0, 2.0)
    assert conic.contains([10.0, 10.0])
    assert conic.contains([11.99, 10.0])
    assert not conic.contains([12.5, 10.0])
    assert DualConic(-3.0 * conic.matrix()).contains([10.0, 11.0])


def test_normalize():
    conic = DualConic(7.0 * np.diag([1.0, 1.0, -1.0]))
    assert np.allclose(conic.normalize().matrix(), np.diag([1.0, 1.0, -1.0]))


def test_equals_is_not_scale_invariant():
    """Known limitation: equality is pointwise, a rescaled conic is not 'equal'."""
    conic = circle(5.0, 5.0, 1.0)
    scaled = DualConic(2.0 * conic.matrix())
    assert conic.equals(DualConic(conic.matrix().copy()))
    assert not conic.equals(scaled)
    assert conic.normalize().equals(scaled.normalize())


def test_bounds_jacobian_matches_numerical(scenes, calibration):
    for quadric, pose in scenes:
        conic = QuadricCamera.project(quadric, pose, calibration).normalize()
        _, db_dC = conic.bounds(H=True)
        numeric = numerical_jacobian(
            lambda c: DualConic(c.reshape(3, 3)).bounds().vector(),
            conic.matrix().ravel().copy(), delta=1e-6)
        assert db_dC.shape == (4, 9)
        assert_jacobians_close(db_dC, numeric)
