"""
quadricslam/geometry/dual_conic.py

The image of a dual quadric: a (3x3) symmetric dual conic C*. A line l is
tangent to the conic iff l^T C* l = 0, which is what makes the bounding box
available in closed form.
"""
import numpy as np
from quadricslam.geometry.aligned_box import AlignedBox2
from quadricslam.geometry.errors import DegenerateConic

DEGENERACY_TOL = 1e-12   # inverse condition number below which the conic is singular


class DualConic:
    """
    Dual conic C* (3x3, symmetric).

    ---
    Attributes:
        _C    (3x3) matrix
    """
    def __init__(self, matrix=None):
        """ Default is the unit circle at the origin, diag(1, 1, -1). """
        C = np.diag([1.0, 1.0, -1.0]) if matrix is None else np.array(matrix, dtype=float)
        if C.shape != (3, 3):
            raise ValueError(f"dual conic must be 3x3, got {C.shape}")
        self._C = C
        self._C.flags.writeable = False

    def matrix(self) -> np.ndarray:
        return self._C

    def normalize(self) -> "DualConic":
        """ Scale so that C[2,2] = -1 (unchanged if C[2,2] is zero). """
        if self._C[2, 2] == 0.0:
            return DualConic(self._C)
        return DualConic(self._C / (-self._C[2, 2]))

    def is_degenerate(self) -> bool:
        if not np.all(np.isfinite(self._C)):
            return True
        return bool(np.linalg.cond(self._C) * DEGENERACY_TOL > 1.0)

    def is_ellipse(self) -> bool:
        """
        True for a proper, real ellipse. With the point conic A = inv(C*):
        det(A[:2,:2]) > 0 rules out hyperbolas and parabolas, and
        det(A) * trace(A[:2,:2]) < 0 rules out imaginary ellipses.
        Both tests are invariant to the scale of C*.
        """
        if self.is_degenerate():
            return False
        A = np.linalg.inv(self._C)
        A2 = A[:2, :2]
        return bool(np.linalg.det(A2) > 0.0 and np.linalg.det(A) * np.trace(A2) < 0.0)

    def contains(self, point) -> bool:
        """ True if the 2D point lies inside or on the ellipse. """
        if not self.is_ellipse():
            raise DegenerateConic("containment is only defined for proper ellipses")
        A = np.linalg.inv(self._C)
        A = A * np.sign(np.trace(A[:2, :2]))   # orient so the interior is negative
        x = np.append(np.asarray(point, dtype=float), 1.0)
        return bool(x @ A @ x <= 0.0)

    def bounds(self, H=False):
        """
        Smallest AlignedBox2 enclosing the ellipse.

        The vertical tangent x = u is the line (1, 0, -u), giving
            C00 - 2u C02 + u^2 C22 = 0   ->   u = (C02 +- sqrt(C02^2 - C00 C22)) / C22
        and likewise for y with C11, C12. Off-diagonal terms are read as the
        mean of the symmetric pair.

        With H=True, also return the (4x9) Jacobian of (xmin, ymin, xmax, ymax)
        w.r.t. C.ravel().
        """
        if not self.is_ellipse():
            raise DegenerateConic("dual conic is not a proper ellipse")
        C = self._C
        c22 = C[2, 2]
        values, jacobian = [], np.zeros((4, 9))

        for axis in (0, 1):
            a = 0.5 * (C[axis, 2] + C[2, axis])
            d = C[axis, axis]
            disc = a * a - d * c22
            if disc < 0.0:
                raise DegenerateConic(f"negative discriminant ({disc}) on image axis {axis}")
            s = np.sqrt(disc)
            u_plus, u_minus = (a + s) / c22, (a - s) / c22

            # gradient of each root w.r.t. (a, d, c22)
            ds = np.array([a, -0.5 * c22, -0.5 * d]) / s
            grad_plus = (np.array([1.0, 0.0, 0.0]) + ds) / c22 - np.array([0.0, 0.0, u_plus / c22])
            grad_minus = (np.array([1.0, 0.0, 0.0]) - ds) / c22 - np.array([0.0, 0.0, u_minus / c22])

            # C22 < 0 for an ellipse in front of the camera, but do not rely on it
            if u_plus <= u_minus:
                lo, hi, g_lo, g_hi = u_plus, u_minus, grad_plus, grad_minus
            else:
                lo, hi, g_lo, g_hi = u_minus, u_plus, grad_minus, grad_plus
            values.append((lo, hi))

            idx_a = (axis * 3 + 2, 2 * 3 + axis)   # C[axis,2] and C[2,axis]
            idx_d = axis * 3 + axis
            for row, g in ((axis, g_lo), (axis + 2, g_hi)):
                jacobian[row, idx_a[0]] += 0.5 * g[0]
                jacobian[row, idx_a[1]] += 0.5 * g[0]
                jacobian[row, idx_d] += g[1]
                jacobian[row, 8] += g[2]

        (xmin, xmax), (ymin, ymax) = values
        box = AlignedBox2(xmin, ymin, xmax, ymax)
        if H:
            return box, jacobian
        return box

    # TODO: normalize both conics before comparing so scaled conics compare equal
    def equals(self, other: "DualConic", tol=1e-9) -> bool:
        """ Pointwise comparison of the conic matrices. """
        return bool(np.allclose(self._C, other.matrix(), rtol=0.0, atol=tol))

    def __repr__(self):
        return f"DualConic(\n{self._C})"
