"""
quadricslam/geometry/constrained_dual_quadric.py

An ellipsoid landmark as a 9-dof manifold variable: a gtsam.Pose3 plus three
positive radii. Its dual quadric matrix is

    Q* = Z @ diag(r1^2, r2^2, r3^2, -1) @ Z.T,      Z = pose (4x4)

and the tangent vector is ordered [w(3), v(3), s(3)]: the right-perturbation of
the pose in gtsam order, followed by log-radii increments.
"""
import numpy as np
import gtsam
from quadricslam.geometry.aligned_box import AlignedBox3
from quadricslam.geometry.errors import InvalidShape
from quadricslam.utils.utils import pose_generators, split_R_t

DEFAULT_MIN_RADIUS = 1e-6   # floor applied by 'constrain' to collapsed axes


class ConstrainedDualQuadric:
    """
    Constrained dual quadric (pose, radii); always a genuine ellipsoid.
    Instances are immutable, every update returns a new quadric.

    ---
    Attributes:
        _pose    gtsam.Pose3, ellipsoid frame in world coords
        _radii   (3,) semi-axis lengths along the ellipsoid frame axes, all > 0
    """
    dimension = 9

    def __init__(self, pose: gtsam.Pose3 = None, radii=None):
        """
        Default is a unit sphere at the origin.
        Raises InvalidShape if any radius is not strictly positive and finite,
        or if the pose translation is not finite.
        """
        radii = np.ones(3) if radii is None else np.asarray(radii, dtype=float).ravel()
        if radii.shape != (3,) or not np.all(np.isfinite(radii)) or np.any(radii <= 0.0):
            raise InvalidShape(f"quadric radii must be 3 positive numbers, got {radii}")
        pose = gtsam.Pose3() if pose is None else pose
        if not np.all(np.isfinite(pose.matrix())):
            raise InvalidShape(f"quadric pose must be finite, got translation {pose.translation()}")
        self._pose = pose
        self._radii = radii.copy()
        self._radii.flags.writeable = False

    @classmethod
    def from_rotation_translation(cls, R, t, r) -> "ConstrainedDualQuadric":
        """ Build from rotation (Rot3 or 3x3), translation (3,) and radii (3,). """
        rot = R if isinstance(R, gtsam.Rot3) else gtsam.Rot3(np.asarray(R, dtype=float))
        return cls(gtsam.Pose3(rot, gtsam.Point3(*np.asarray(t, dtype=float))), r)

    @staticmethod
    def constrain(dual_quadric, min_radius=DEFAULT_MIN_RADIUS) -> "ConstrainedDualQuadric":
        """
        Project an arbitrary (4x4) dual quadric onto the nearest ellipsoid.

        The matrix is symmetrized and scaled so that Q[3,3] = -1, which puts the
        centroid in the last column (t = -Q[:3,3]) and the centred shape in
        E = Q[:3,:3] + t t^T = R diag(r^2) R^T. An eigen-decomposition of E gives
        the rotation and radii; axes with eigenvalue below min_radius^2 are
        lifted to min_radius.
        """
        Q = np.asarray(dual_quadric, dtype=float)
        Q = 0.5 * (Q + Q.T)
        scale = -Q[3, 3]
        if abs(scale) < 1e-12 * max(1.0, np.abs(Q).max()):
            raise InvalidShape("dual quadric has Q[3,3] = 0, no finite centroid")
        Q = Q / scale

        S, q = split_R_t(Q)
        t = -q
        E = S + np.outer(t, t)
        eigvals, eigvecs = np.linalg.eigh(E)    # ascending eigenvalues
        if np.all(eigvals <= 0.0):
            raise InvalidShape(f"dual quadric has no positive axis, eigenvalues {eigvals}")

        radii = np.sqrt(np.maximum(eigvals, min_radius ** 2))
        if np.linalg.det(eigvecs) < 0:
            eigvecs[:, 2] *= -1.0               # keep a proper rotation
        return ConstrainedDualQuadric.from_rotation_translation(eigvecs, t, radii)

    ## Accessors ##
    def pose(self) -> gtsam.Pose3:
        return self._pose

    def radii(self) -> np.ndarray:
        return self._radii

    def centroid(self) -> np.ndarray:
        return np.asarray(self._pose.translation())

    def dim(self) -> int:
        return self.dimension

    ## Matrix form ##
    def matrix(self, H=False):
        """
        The (4x4) dual quadric Q*. With H=True, also return the (16x9) Jacobian
        of Q*.ravel() w.r.t. the tangent vector [w, v, s].
        """
        Z = self._pose.matrix()
        Qc = np.diag(np.append(self._radii ** 2, -1.0))
        Q = Z @ Qc @ Z.T
        if not H:
            return Q

        dQ = np.empty((16, 9))
        # pose: dZ = Z @ G  ->  dQ = dZ Qc Z^T + (dZ Qc Z^T)^T
        for i, G in enumerate(pose_generators()):
            dZQ = Z @ G @ Qc @ Z.T
            dQ[:, i] = (dZQ + dZQ.T).ravel()
        # shape: d(r^2)/ds = 2 r^2 with r = r0 * exp(s)
        for j in range(3):
            D = np.zeros((4, 4))
            D[j, j] = 2.0 * self._radii[j] ** 2
            dQ[:, 6 + j] = (Z @ D @ Z.T).ravel()
        return Q, dQ

    def normalized_matrix(self) -> np.ndarray:
        """ Dual quadric scaled so that Q[3,3] = -1. """
        Q = self.matrix()
        return Q / (-Q[3, 3])

    ## Geometry ##
    def bounds(self) -> AlignedBox3:
        """
        Axis-aligned box tangent to the ellipsoid. Planes x = u touch the
        surface where  Q00 - 2u Q03 + u^2 Q33 = 0 (same for y, z).
        """
        Q = self.matrix()
        lo, hi = np.empty(3), np.empty(3)
        for i in range(3):
            root = np.sqrt(Q[i, 3] ** 2 - Q[i, i] * Q[3, 3])
            a = (Q[i, 3] + root) / Q[3, 3]
            b = (Q[i, 3] - root) / Q[3, 3]
            lo[i], hi[i] = min(a, b), max(a, b)
        return AlignedBox3.from_vector(np.concatenate([lo, hi]))

    def is_behind(self, camera_pose: gtsam.Pose3) -> bool:
        """ True if the centroid has non-positive depth in the camera frame. """
        p_cam = camera_pose.transformTo(gtsam.Point3(*self.centroid()))
        return bool(np.asarray(p_cam)[2] <= 0.0)

    def contains(self, point) -> bool:
        """
        True if the point (or the translation of a Pose3) satisfies the point
        quadric equation x^T Q x <= 0; the surface itself counts as inside.
        """
        if isinstance(point, gtsam.Pose3):
            point = point.translation()
        p_local = np.asarray(self._pose.transformTo(gtsam.Point3(*np.asarray(point, dtype=float))))
        return bool(np.sum((p_local / self._radii) ** 2) - 1.0 <= 0.0)

    ## Manifold ##
    def retract(self, v) -> "ConstrainedDualQuadric":
        """ Move by tangent v = [w, v, s]: pose * Expmap([w, v]), radii * exp(s). """
        v = np.asarray(v, dtype=float).ravel()
        pose = self._pose.compose(gtsam.Pose3.Expmap(v[:6]))
        return ConstrainedDualQuadric(pose, self._radii * np.exp(v[6:]))

    def local_coordinates(self, other: "ConstrainedDualQuadric") -> np.ndarray:
        """ Tangent vector v such that self.retract(v) == other. """
        xi = gtsam.Pose3.Logmap(self._pose.between(other.pose()))
        return np.concatenate([xi, np.log(other.radii() / self._radii)])

    @staticmethod
    def Retract(v) -> "ConstrainedDualQuadric":
        """ Retract at the origin (unit sphere at identity). """
        return ConstrainedDualQuadric().retract(v)

    @staticmethod
    def LocalCoordinates(q: "ConstrainedDualQuadric") -> np.ndarray:
        """ Local coordinates at the origin (unit sphere at identity). """
        return ConstrainedDualQuadric().local_coordinates(q)

    @staticmethod
    def chart_jacobian(v) -> np.ndarray:
        """
        (9x9) derivative of the local tangent at Retract(v) w.r.t. v, i.e.
        Retract(v + dv) ~ Retract(v).retract(J @ dv).
        """
        v = np.asarray(v, dtype=float).ravel()
        J = np.eye(9)
        J[:6, :6] = gtsam.Pose3.ExpmapDerivative(v[:6])
        return J

    ## Values ##
    def add_to_values(self, values: gtsam.Values, key):
        """ Store as its origin-chart 9-vector (gtsam Values cannot hold python types). """
        values.insert(key, ConstrainedDualQuadric.LocalCoordinates(self))

    @staticmethod
    def get_from_values(values: gtsam.Values, key) -> "ConstrainedDualQuadric":
        return ConstrainedDualQuadric.Retract(values.atVector(key))

    ## Testable ##
    # TODO: normalize both matrices before comparing so scaled quadrics compare equal
    def equals(self, other: "ConstrainedDualQuadric", tol=1e-9) -> bool:
        """ Pointwise comparison of the dual quadric matrices. """
        return bool(np.allclose(self.matrix(), other.matrix(), rtol=0.0, atol=tol))

    def __repr__(self):
        return (f"ConstrainedDualQuadric(centroid={np.round(self.centroid(), 6).tolist()}, "
                f"radii={np.round(self._radii, 6).tolist()})")

    def __str__(self):
        return f"{self!r}\n{self.matrix()}"
