# quadricslam/utils/utils.py
import numpy as np


def skew(w):
    """ Return the (3x3) skew-symmetric matrix [w]x, so that skew(w) @ v == cross(w, v). """
    wx, wy, wz = w
    return np.array([[0.0, -wz,  wy],
                     [ wz, 0.0, -wx],
                     [-wy,  wx, 0.0]])


def non_homogenous(T):
    """ Drop the last row of a (4x4) transform or dual quadric, giving its (3x4) top block. """
    return T[:3, :]


def split_R_t(T):
    """ Split a (3x4) or (4x4) matrix into its top-left (3x3) block and last column (3,). """
    return T[:3, :3], T[:3, 3]


def pose_generators():
    """
    The six (4x4) se(3) generators, in gtsam tangent order [wx, wy, wz, vx, vy, vz].
    For a pose T perturbed on the right, T * Expmap(xi) ~ T @ (I + sum_i xi_i * G_i).
    """
    G = np.zeros((6, 4, 4))
    for i in range(3):
        e = np.zeros(3)
        e[i] = 1.0
        G[i, :3, :3] = skew(e)   # rotation
        G[i + 3, :3, 3] = e      # translation
    return G


def numerical_jacobian(f, x, dim=None, delta=1e-5):
    """
    Central-difference Jacobian of f at x.

    ---
    Args:
        f       callable returning an array-like (flattened row-major)
        x       numpy array (perturbed additively) or a manifold value exposing
                'retract' (gtsam.Pose3, ConstrainedDualQuadric)
        dim     tangent dimension, required for manifold values
        delta   step size
    Returns:
        (len(f(x)) x dim) matrix
    """
    if isinstance(x, np.ndarray):
        dim = x.size
        step = lambda dx: x + dx.reshape(x.shape)
    else:
        if dim is None:
            raise ValueError("'dim' is required when differentiating on a manifold")
        step = x.retract

    columns = []
    for i in range(dim):
        dx = np.zeros(dim)
        dx[i] = delta
        f_plus = np.asarray(f(step(dx)), dtype=float).ravel()
        f_minus = np.asarray(f(step(-dx)), dtype=float).ravel()
        columns.append((f_plus - f_minus) / (2.0 * delta))
    return np.column_stack(columns)
