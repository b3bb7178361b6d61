"""
quadricslam/utils/graph_utils.py

Glue between numpy arrays, quadricslam types and gtsam containers.
"""
import numpy as np
import gtsam
from quadricslam.geometry.constrained_dual_quadric import ConstrainedDualQuadric


def pose_key(fid):
    """ Key of camera pose 'fid' in the factor graph. """
    return gtsam.symbol('x', fid)


def quadric_key(oid):
    """ Key of quadric landmark 'oid' in the factor graph. """
    return gtsam.symbol('q', oid)


def compute_err(meas_boxes, pred_boxes):
    """ Per-observation L2 norm of the (xmin, ymin, xmax, ymax) difference, in pixels. """
    meas = np.array([b.vector() for b in meas_boxes])
    pred = np.array([b.vector() for b in pred_boxes])
    return np.linalg.norm(meas - pred, axis=1)


def extract_intrinsic_param(K):
    """
    Return (fx, fy, skew, cx, cy) extracted from an intrinsic matrix.
    Used for providing parameters to gtsam.Cal3_S2().
    """
    fx, fy = K[0, 0], K[1, 1]  # focal length in x & y (pixels)
    s = K[0, 1]  # skew
    cx, cy = K[0, 2], K[1, 2]  # principal point x & y (pixels)
    return fx, fy, s, cx, cy


def calibration_from_K(K) -> gtsam.Cal3_S2:
    """ Wrap a (3x3) intrinsic matrix into gtsam.Cal3_S2. """
    return gtsam.Cal3_S2(*extract_intrinsic_param(np.asarray(K, dtype=float)))


def look_at_pose(eye, target, up=(0.0, 0.0, 1.0)) -> gtsam.Pose3:
    """ Camera pose (camera -> world) at 'eye' with its optical axis through 'target'. """
    camera = gtsam.PinholeCameraCal3_S2.Lookat(gtsam.Point3(*eye), gtsam.Point3(*target),
                                               gtsam.Point3(*up), gtsam.Cal3_S2())
    return camera.pose()


def quadrics_from_values(values: gtsam.Values, object_ids):
    """ Read every quadric landmark back from 'values', as {oid: ConstrainedDualQuadric}. """
    return {oid: ConstrainedDualQuadric.get_from_values(values, quadric_key(oid))
            for oid in object_ids}


def poses_from_values(values: gtsam.Values, frame_ids):
    """ Read every camera pose back from 'values', as {fid: Pose3}. """
    return {fid: values.atPose3(pose_key(fid)) for fid in frame_ids}
