import argparse
import logging
import numpy as np
import gtsam
from quadricslam.backend.optimizers.quadric_adjustment import QuadricAdjustment
from quadricslam.geometry.aligned_box import AlignedBox2
from quadricslam.geometry.constrained_dual_quadric import ConstrainedDualQuadric
from quadricslam.geometry.errors import QuadricProjectionError
from quadricslam.geometry.quadric_camera import QuadricCamera
from quadricslam.utils.graph_utils import compute_err, look_at_pose

logger = logging.getLogger(__name__)


def parse_cli(argv=None):
    parser = argparse.ArgumentParser(description="Quadric landmark refinement on a synthetic orbit.")
    parser.add_argument("--frames", type=int, default=16, help="camera poses on the orbit")
    parser.add_argument("--objects", type=int, default=3, help="ellipsoids in the scene")
    parser.add_argument("--orbit-radius", type=float, default=10.0)
    parser.add_argument("--box-noise", type=float, default=2.0, help="pixel sigma added to each box edge")
    parser.add_argument("--pose-noise", type=float, default=0.02, help="sigma of the initial pose perturbation")
    parser.add_argument("--max-iterations", type=int, default=100)
    parser.add_argument("--free-poses", action="store_true",
                        help="anchor only the first pose instead of putting a prior on every pose")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def make_scene(rng, n_objects):
    """ Random ellipsoids around the origin, {oid: ConstrainedDualQuadric}. """
    quadrics = {}
    for oid in range(n_objects):
        rot = gtsam.Rot3.RzRyRx(*rng.uniform(-np.pi, np.pi, 3))
        centroid = gtsam.Point3(*rng.uniform(-2.0, 2.0, 3))
        quadrics[oid] = ConstrainedDualQuadric(gtsam.Pose3(rot, centroid), rng.uniform(0.3, 1.0, 3))
    return quadrics


def make_orbit(n_frames, radius, height=2.0):
    """ Camera poses on a circle, all looking at the origin, {fid: Pose3}. """
    poses = {}
    for fid, theta in enumerate(np.linspace(0.0, 2 * np.pi, n_frames, endpoint=False)):
        eye = (radius * np.cos(theta), radius * np.sin(theta), height)
        poses[fid] = look_at_pose(eye, (0.0, 0.0, 0.0))
    return poses


def simulate_boxes(rng, quadrics, poses, calibration, box_noise):
    """ Noisy box observations (fid, oid, AlignedBox2) of every visible quadric. """
    observations = []
    for fid, pose in poses.items():
        for oid, quadric in quadrics.items():
            try:
                box = QuadricCamera.project(quadric, pose, calibration).bounds()
            except QuadricProjectionError as e:
                logger.debug("object %d not visible from frame %d: %s", oid, fid, e)
                continue
            v = box.vector() + rng.normal(0.0, box_noise, 4)
            observations.append((fid, oid, AlignedBox2(min(v[0], v[2]), min(v[1], v[3]),
                                                       max(v[0], v[2]), max(v[1], v[3]))))
    return observations


def centroid_errors(quadrics_gt, quadrics_est):
    return {oid: float(np.linalg.norm(q.centroid() - quadrics_gt[oid].centroid()))
            for oid, q in quadrics_est.items()}


def mean_box_error(observations, poses, quadrics, calibration):
    """ Mean pixel norm of (predicted - observed) over the boxes whose quadric still projects. """
    meas_boxes, pred_boxes = [], []
    for fid, oid, box in observations:
        if fid not in poses or oid not in quadrics:
            continue
        try:
            pred_boxes.append(QuadricCamera.project(quadrics[oid], poses[fid], calibration).bounds())
        except QuadricProjectionError:
            continue
        meas_boxes.append(box)
    if not meas_boxes:
        return float("nan")
    return float(np.mean(compute_err(meas_boxes, pred_boxes)))


def run(argv=None):
    """ Simulate, initialize and optimize; returns the optimized gtsam.Values. """
    # 0) Parse arguments
    args = parse_cli(argv)
    logging.basicConfig(level=args.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    rng = np.random.default_rng(args.seed)
    calibration = gtsam.Cal3_S2(525.0, 525.0, 0.0, 320.0, 240.0)

    # 1) Ground-truth scene and noisy observations
    quadrics_gt = make_scene(rng, args.objects)
    poses_gt = make_orbit(args.frames, args.orbit_radius)
    observations = simulate_boxes(rng, quadrics_gt, poses_gt, calibration, args.box_noise)
    logger.info("simulated %d box observations", len(observations))

    # 2) Perturbed poses, linear quadric initialization
    init_poses = {fid: pose.retract(rng.normal(0.0, args.pose_noise, 6))
                  for fid, pose in poses_gt.items()}
    adjustment = QuadricAdjustment(calibration,
                                   box_sigma=max(args.box_noise, 1.0),
                                   fix_poses=not args.free_poses,
                                   max_iterations=args.max_iterations)
    init_quadrics = adjustment.initialize_quadrics(observations, init_poses)
    for oid, err in centroid_errors(quadrics_gt, init_quadrics).items():
        logger.info("object %d: initial centroid error %.3f m", oid, err)

    # 3) Optimize
    graph, values = adjustment.make_graph(observations, init_poses, init_quadrics)
    logger.info("initial mean box error %.3f px",
                mean_box_error(observations, init_poses, init_quadrics, calibration))
    result = adjustment.optimize(graph, values)

    # 4) Report
    quadrics_est = adjustment.extract_quadrics(result)
    logger.info("final mean box error %.3f px",
                mean_box_error(observations, adjustment.extract_poses(result), quadrics_est, calibration))
    for oid, err in centroid_errors(quadrics_gt, quadrics_est).items():
        logger.info("object %d: final centroid error %.3f m, radii %s (true %s)", oid, err,
                    np.round(quadrics_est[oid].radii(), 3), np.round(quadrics_gt[oid].radii(), 3))
    return result


def main(argv=None):
    run(argv)


if __name__ == "__main__":
    main()
