"""
quadricslam/geometry/quadric_camera.py

Projection of a ConstrainedDualQuadric through a pinhole camera:

    P  = K [R^T | -R^T t]          (3x4), camera pose (R, t) is camera -> world
    C* = P Q* P^T                  (3x3)

Jacobians are taken w.r.t. the quadric tangent [w, v, s] and the camera pose
tangent [w, v] (right perturbation, gtsam order). All matrices are flattened
row-major.
"""
import numpy as np
import gtsam
from quadricslam.geometry.constrained_dual_quadric import ConstrainedDualQuadric
from quadricslam.geometry.dual_conic import DualConic
from quadricslam.geometry.errors import BehindCamera, CameraInsideQuadric
from quadricslam.utils.utils import non_homogenous, pose_generators


class QuadricCamera:
    """ Stateless projection operator, all methods are static. """

    @staticmethod
    def transform_to_image(pose: gtsam.Pose3, calibration: gtsam.Cal3_S2) -> np.ndarray:
        """ The (3x4) projection matrix P = K [R|t]_{world->camera}. """
        image_T_world = non_homogenous(pose.inverse().matrix())   # (3x4)
        return calibration.K() @ image_T_world

    @staticmethod
    def project(quadric: ConstrainedDualQuadric,
                pose: gtsam.Pose3,
                calibration: gtsam.Cal3_S2,
                H=False):
        """
        Project the quadric into a DualConic.

        Raises BehindCamera if the centroid has non-positive depth and
        CameraInsideQuadric if the camera centre is inside the ellipsoid;
        in both cases the image is not a bounded ellipse.

        With H=True, return (conic, dC_dq (9x9), dC_dx (9x6)).
        """
        if quadric.is_behind(pose):
            raise BehindCamera(f"{quadric!r} is behind the camera")
        if quadric.contains(pose):
            raise CameraInsideQuadric(f"camera is inside {quadric!r}")

        P = QuadricCamera.transform_to_image(pose, calibration)
        if not H:
            return DualConic(P @ quadric.matrix() @ P.T)

        Q, dQ_dq = quadric.matrix(H=True)
        conic = DualConic(P @ Q @ P.T)

        # vec(P Q P^T) = kron(P, P) vec(Q) for row-major vec
        dC_dq = np.kron(P, P) @ dQ_dq   # (9x16) @ (16x9)

        # camera pose: T -> T (I + G)  =>  T^-1 -> (I - G) T^-1  =>  dP = -K [I|0] G T^-1
        K = calibration.K()
        T_inv = pose.inverse().matrix()
        dC_dx = np.empty((9, 6))
        for i, G in enumerate(pose_generators()):
            dP = -K @ non_homogenous(G @ T_inv)
            M = dP @ Q @ P.T
            dC_dx[:, i] = (M + M.T).ravel()

        return conic, dC_dq, dC_dx
