import numpy as np
import gtsam
import pytest

from quadricslam.utils.graph_utils import calibration_from_K, compute_err, extract_intrinsic_param, look_at_pose
from quadricslam.geometry.aligned_box import AlignedBox2
from quadricslam.utils.utils import non_homogenous, numerical_jacobian, pose_generators, skew, split_R_t


def test_skew_is_cross_product():
    w, v = np.array([0.3, -1.2, 2.0]), np.array([1.0, 0.5, -0.7])
    assert np.allclose(skew(w) @ v, np.cross(w, v))
    assert np.allclose(skew(w), -skew(w).T)


def test_partitioning_helpers():
    R = gtsam.Rot3.Ry(0.4).matrix()
    t = np.array([1.0, 2.0, 3.0])
    T = gtsam.Pose3(gtsam.Rot3(R), gtsam.Point3(*t)).matrix()
    assert np.allclose(non_homogenous(T), np.column_stack([R, t]))
    for M in (T, non_homogenous(T)):
        R2, t2 = split_R_t(M)
        assert np.allclose(R2, R) and np.allclose(t2, t)


def test_pose_generators_match_gtsam_expmap():
    """T @ (I + sum xi_i G_i) is the first-order expansion of T * Expmap(xi)."""
    xi = 1e-7 * np.array([1.0, -2.0, 3.0, 0.5, 0.1, -0.4])
    first_order = np.eye(4) + np.einsum('i,ijk->jk', xi, pose_generators())
    assert np.allclose(gtsam.Pose3.Expmap(xi).matrix(), first_order, atol=1e-12)


def test_numerical_jacobian_of_linear_map():
    A = np.arange(12.0).reshape(4, 3)
    J = numerical_jacobian(lambda x: A @ x, np.array([0.1, 0.2, 0.3]))
    assert np.allclose(J, A)


def test_numerical_jacobian_needs_dim_on_manifold():
    with pytest.raises(ValueError):
        numerical_jacobian(lambda x: x.translation(), gtsam.Pose3())


def test_numerical_jacobian_on_pose():
    """d translation / d [w, v] at identity is [0 | I]."""
    J = numerical_jacobian(lambda x: x.translation(), gtsam.Pose3(), dim=6)
    assert np.allclose(J, np.hstack([np.zeros((3, 3)), np.eye(3)]), atol=1e-8)


def test_calibration_from_K():
    K = np.array([[500.0, 0.0, 320.0], [0.0, 510.0, 240.0], [0.0, 0.0, 1.0]])
    assert extract_intrinsic_param(K) == (500.0, 510.0, 0.0, 320.0, 240.0)
    assert np.allclose(calibration_from_K(K).K(), K)


def test_look_at_pose_points_optical_axis_at_target():
    pose = look_at_pose((5.0, 0.0, 1.0), (0.0, 0.0, 1.0))
    assert np.allclose(pose.translation(), [5.0, 0.0, 1.0])
    assert np.allclose(pose.rotation().matrix()[:, 2], [-1.0, 0.0, 0.0])


def test_compute_err():
    a = [AlignedBox2(0, 0, 10, 10), AlignedBox2(0, 0, 1, 1)]
    b = [AlignedBox2(0, 0, 13, 14), AlignedBox2(0, 0, 1, 1)]
    assert np.allclose(compute_err(a, b), [5.0, 0.0])
