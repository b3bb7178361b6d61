"""
quadricslam/backend/optimizers/quadric_adjustment.py

Build a gtsam factor graph of camera poses and quadric landmarks linked by
bounding-box factors, initialize the landmarks linearly, and refine everything
with Levenberg-Marquardt.
"""
import logging
from collections import defaultdict
import numpy as np
import gtsam
from quadricslam.backend.factors.bounding_box_factor import BoundingBoxFactor
from quadricslam.geometry.constrained_dual_quadric import ConstrainedDualQuadric
from quadricslam.geometry.errors import InvalidShape
from quadricslam.geometry.quadric_camera import QuadricCamera
from quadricslam.utils.graph_utils import pose_key, poses_from_values, quadric_key, quadrics_from_values

logger = logging.getLogger(__name__)


def _box_planes(box, P):
    """ The 4 planes (4x4, one per row) back-projected from the box edges through P. """
    lines = np.array([[1.0, 0.0, -box.xmin],
                      [0.0, 1.0, -box.ymin],
                      [1.0, 0.0, -box.xmax],
                      [0.0, 1.0, -box.ymax]])
    planes = lines @ P                                          # pi^T = l^T P
    return planes / np.linalg.norm(planes, axis=1, keepdims=True)


def initialize_quadric(boxes, poses, calibration: gtsam.Cal3_S2) -> ConstrainedDualQuadric:
    """
    Linear least-squares quadric from >= 3 box observations.

    Every box edge back-projects to a plane pi tangent to the quadric,
    pi^T Q* pi = 0, which is linear in the 10 unique entries of Q*. The SVD
    null vector of the stacked constraints gives a generic dual quadric, which
    'constrain' then projects onto the nearest ellipsoid.
    Raises InvalidShape if the solution cannot be constrained.
    """
    rows = []
    for box, pose in zip(boxes, poses):
        P = QuadricCamera.transform_to_image(pose, calibration)
        for a, b, c, d in _box_planes(box, P):
            rows.append([a * a, 2 * a * b, 2 * a * c, 2 * a * d,
                         b * b, 2 * b * c, 2 * b * d,
                         c * c, 2 * c * d,
                         d * d])
    if len(rows) < 9:
        raise InvalidShape(f"need at least 3 views to initialize a quadric, got {len(rows) // 4}")

    _, _, Vt = np.linalg.svd(np.asarray(rows))
    q = Vt[-1]
    Q = np.array([[q[0], q[1], q[2], q[3]],
                  [q[1], q[4], q[5], q[6]],
                  [q[2], q[5], q[7], q[8]],
                  [q[3], q[6], q[8], q[9]]])
    return ConstrainedDualQuadric.constrain(Q)


class QuadricAdjustment:
    """
    Joint refinement of camera poses and quadric landmarks from box observations.

    ---
    Attributes:
        calibration     gtsam.Cal3_S2 shared by every observation
        box_sigma       pixel standard deviation of each box edge
        prior_sigmas    (6,) [rad, rad, rad, m, m, m] sigmas of the pose priors
        fix_poses       put a prior on every pose rather than only the first
        frame_ids       pose ids of the last graph built by make_graph
        object_ids      quadric ids of the last graph built by make_graph
    """
    def __init__(self,
                 calibration: gtsam.Cal3_S2,
                 box_sigma=3.0,
                 prior_sigmas=np.array([np.deg2rad(1), np.deg2rad(1), np.deg2rad(1),
                                        0.05, 0.05, 0.05]),
                 fix_poses=False,          # odometry-free setups need every pose anchored
                 max_iterations=100
                 ):
        self.calibration = calibration
        self.box_sigma = box_sigma
        self.prior_sigmas = np.asarray(prior_sigmas, dtype=float)
        self.fix_poses = fix_poses
        self.max_iterations = max_iterations
        self.frame_ids = []
        self.object_ids = []

    def make_graph(self,
                   observations,     # iterable of (fid, oid, AlignedBox2)
                   init_poses,       # dict fid -> Pose3
                   init_quadrics,    # dict oid -> ConstrainedDualQuadric
                   ):
        """ Build a gtsam factor-graph + initial Values for the given observations. """
        graph = gtsam.NonlinearFactorGraph()
        values = gtsam.Values()

        box_noise = gtsam.noiseModel.Isotropic.Sigma(4, self.box_sigma)
        prior_noise = gtsam.noiseModel.Diagonal.Sigmas(self.prior_sigmas)

        fids = sorted(init_poses)
        for i, fid in enumerate(fids):
            xk = pose_key(fid)
            values.insert(xk, init_poses[fid])
            if i == 0 or self.fix_poses:
                graph.add(gtsam.PriorFactorPose3(xk, init_poses[fid], prior_noise))

        for oid, quadric in init_quadrics.items():
            quadric.add_to_values(values, quadric_key(oid))

        n_factors = 0
        for fid, oid, box in observations:
            if fid not in init_poses or oid not in init_quadrics:
                continue   # landmark was never initialized
            factor = BoundingBoxFactor(box, self.calibration, pose_key(fid), quadric_key(oid), box_noise)
            graph.add(factor.as_custom_factor())
            n_factors += 1

        self.frame_ids = fids
        self.object_ids = sorted(init_quadrics)
        logger.info("graph built: %d poses, %d quadrics, %d box factors",
                    len(fids), len(init_quadrics), n_factors)
        return graph, values

    def optimize(self, graph, values):
        """ Levenberg-Marquardt over the whole graph. """
        params = gtsam.LevenbergMarquardtParams()
        params.setMaxIterations(self.max_iterations)
        optimizer = gtsam.LevenbergMarquardtOptimizer(graph, values, params)
        result = optimizer.optimize()
        logger.info("LM finished after %d iterations: error %.4f -> %.4f",
                    optimizer.iterations(), graph.error(values), graph.error(result))
        return result

    def extract_quadrics(self, values):
        """ Quadrics of the last graph built, {oid: ConstrainedDualQuadric}. """
        return quadrics_from_values(values, self.object_ids)

    def extract_poses(self, values):
        """ Camera poses of the last graph built, {fid: Pose3}. """
        return poses_from_values(values, self.frame_ids)

    def initialize_quadrics(self, observations, init_poses):
        """ Linear initialization of every object seen from >= 3 poses, {oid: quadric}. """
        boxes_by_oid = defaultdict(list)
        for fid, oid, box in observations:
            if fid in init_poses:
                boxes_by_oid[oid].append((box, init_poses[fid]))

        quadrics = {}
        for oid, obs in boxes_by_oid.items():
            boxes, poses = zip(*obs)
            try:
                quadrics[oid] = initialize_quadric(boxes, poses, self.calibration)
            except InvalidShape as e:
                logger.warning("could not initialize quadric %d: %s", oid, e)
        return quadrics
