"""
quadricslam/backend/factors/bounding_box_factor.py

Residual between an observed image box and the box predicted by projecting a
quadric landmark from a camera pose:

    error = bounds(project(Q, X, K)) - measured       (xmin, ymin, xmax, ymax)

The factor is a pure function of the variable values it is handed. Poses that
cannot produce a bounded image ellipse yield a fixed sentinel error with zero
Jacobians, so that the optimizer keeps running.
"""
import logging
import numpy as np
import gtsam
from quadricslam.geometry.aligned_box import AlignedBox2
from quadricslam.geometry.constrained_dual_quadric import ConstrainedDualQuadric
from quadricslam.geometry.errors import QuadricProjectionError
from quadricslam.geometry.quadric_camera import QuadricCamera
from quadricslam.utils.utils import numerical_jacobian

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_ERROR = 1000.0   # pixels, per box edge


class BoundingBoxFactor:
    """
    Bounding-box observation of quadric 'quadric_key' from camera 'pose_key'.

    ---
    Attributes:
        _measured        observed AlignedBox2
        _calibration     gtsam.Cal3_S2 intrinsics
        _pose_key        key of the gtsam.Pose3 camera variable
        _quadric_key     key of the quadric variable (9-vector chart, see ConstrainedDualQuadric.add_to_values)
        _noise_model     gtsam noise model over the 4 box edges
    """
    def __init__(self,
                 measured: AlignedBox2,
                 calibration: gtsam.Cal3_S2,
                 pose_key,
                 quadric_key,
                 noise_model=None,                        # unit noise if None
                 fallback_error=DEFAULT_FALLBACK_ERROR,   # error per edge when projection fails
                 numerical_jacobians=False                # central differences instead of the analytic chain
                 ):
        self._measured = measured
        self._calibration = calibration
        self._pose_key = pose_key
        self._quadric_key = quadric_key
        self._noise_model = gtsam.noiseModel.Unit.Create(4) if noise_model is None else noise_model
        self._fallback_error = float(fallback_error)
        self._numerical_jacobians = numerical_jacobians

    ## Accessors ##
    def measured_box(self) -> AlignedBox2:
        return self._measured

    def calibration(self) -> gtsam.Cal3_S2:
        return self._calibration

    def pose_key(self):
        return self._pose_key

    def quadric_key(self):
        return self._quadric_key

    def keys(self):
        """ Variable keys, in the order of the Jacobian blocks. """
        return [self._pose_key, self._quadric_key]

    def noise_model(self):
        return self._noise_model

    ## Evaluation ##
    def _fallback(self, H):
        error = np.full(4, self._fallback_error)
        if H:
            return error, np.zeros((4, 6)), np.zeros((4, 9))
        return error

    def evaluate_error(self, pose: gtsam.Pose3, quadric: ConstrainedDualQuadric, H=False):
        """
        The 4-vector error predicted - measured.
        With H=True, return (error, dE_dx (4x6), dE_dq (4x9)).
        """
        try:
            if not H:
                return self._error_no_fallback(pose, quadric)
            if self._numerical_jacobians:
                error = self._error_no_fallback(pose, quadric)
            else:
                conic, dC_dq, dC_dx = QuadricCamera.project(quadric, pose, self._calibration, H=True)
                predicted, db_dC = conic.bounds(H=True)
        except QuadricProjectionError as e:
            logger.debug("bbox factor (%s, %s) fell back to sentinel error: %s",
                         self._pose_key, self._quadric_key, e)
            return self._fallback(H)

        if not self._numerical_jacobians:
            error = predicted.vector() - self._measured.vector()
            return error, db_dC @ dC_dx, db_dC @ dC_dq

        # a valid error is kept even when a perturbed point fails to project
        try:
            dE_dx, dE_dq = self.evaluate_h_numerical(pose, quadric)
        except QuadricProjectionError as e:
            logger.debug("bbox factor (%s, %s) has no numerical Jacobian near the projection limit: %s",
                         self._pose_key, self._quadric_key, e)
            dE_dx, dE_dq = np.zeros((4, 6)), np.zeros((4, 9))
        return error, dE_dx, dE_dq

    def evaluate_h_numerical(self, pose: gtsam.Pose3, quadric: ConstrainedDualQuadric, delta=1e-6):
        """ Central-difference (dE_dx (4x6), dE_dq (4x9)), used to check the analytic chain. """
        dE_dx = numerical_jacobian(lambda x: self._error_no_fallback(x, quadric), pose, dim=6, delta=delta)
        dE_dq = numerical_jacobian(lambda q: self._error_no_fallback(pose, q), quadric, dim=9, delta=delta)
        return dE_dx, dE_dq

    def _error_no_fallback(self, pose, quadric):
        predicted = QuadricCamera.project(quadric, pose, self._calibration).bounds()
        return predicted.vector() - self._measured.vector()

    ## gtsam glue ##
    def as_custom_factor(self) -> gtsam.CustomFactor:
        """
        Wrap into a gtsam.CustomFactor over [pose_key, quadric_key]. The quadric
        lives in Values as its origin-chart 9-vector, so its Jacobian block is
        mapped through the chart derivative.
        """
        def error_func(this: gtsam.CustomFactor, values: gtsam.Values, jacobians):
            pose = values.atPose3(self._pose_key)
            v = values.atVector(self._quadric_key)
            quadric = ConstrainedDualQuadric.Retract(v)
            if jacobians is None:
                return self.evaluate_error(pose, quadric)
            error, dE_dx, dE_dq = self.evaluate_error(pose, quadric, H=True)
            jacobians[0] = dE_dx
            jacobians[1] = dE_dq @ ConstrainedDualQuadric.chart_jacobian(v)
            return error

        return gtsam.CustomFactor(self._noise_model, self.keys(), error_func)

    def __repr__(self):
        return (f"BoundingBoxFactor(pose={self._pose_key}, quadric={self._quadric_key}, "
                f"measured={self._measured.vector().tolist()})")
