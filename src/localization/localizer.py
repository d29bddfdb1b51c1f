import logging

import numpy as np

from localization.config import LocalizerConfig
from localization.database import CorrespondenceDatabase
from localization.geometry import (
    camera_center,
    compute_reprojection_error,
    krt_from_p,
    projection_matrix,
    refine_pose_nonlinear,
)
from localization.intrinsics import IntrinsicBase, resolve_intrinsic_hint
from localization.resection import robust_resection
from scene.localization_data import LocalizationResult, LocalizationStatus, ResectionData
from scene.regions import Regions
from scene.scene import Pose, SceneSnapshot

logger = logging.getLogger(__name__)


class Localizer:
    """
    Single image localizer backed by a landmark observation database.

    `init` builds the database exactly once, afterwards `localize` only reads
    it and may be called from several threads.
    """

    def __init__(self, config: LocalizerConfig | None = None) -> None:
        self.cfg = config or LocalizerConfig()
        # scene is borrowed and must outlive the localizer
        self.scene: SceneSnapshot | None = None
        self.database: CorrespondenceDatabase | None = None

    @property
    def is_initialized(self) -> bool:
        return self.database is not None

    def init(self, scene: SceneSnapshot, regions_per_view: dict[int, Regions]) -> bool:
        """
        Build the retrieval database from a scene and its per-view regions.

        Args:
            scene: Reconstruction with at least one pose and one landmark.
            regions_per_view: Mapping view_id -> Regions.

        Returns:
            success: False if the input has nothing to localize against; the
                localizer then rejects every query.

        """
        if self.is_initialized:
            logger.warning("Retrieval database is already built, init ignored")
            return False

        try:
            database = CorrespondenceDatabase.build(
                scene, regions_per_view, self.cfg.matcher_type
            )
        except ValueError as e:
            logger.error("Retrieval database initialization failed: %s", e)
            return False

        self.database = database
        self.scene = scene
        return True

    def localize(
        self,
        image_size: tuple[int, int],
        intrinsic: IntrinsicBase | None,
        query_regions: Regions,
    ) -> LocalizationResult:
        """
        Estimate the pose of a query image.

        Steps:
        1. Ratio test matching against the landmark observation descriptors
        2. Build 2D-3D correspondences, undistorting 2D points if needed
        3. Robust resection
        4. Decompose P = K [R | t] into the pose (R, -R^T t)

        Args:
            image_size: (width, height) of the query image
            intrinsic: Query camera model, None if unknown
            query_regions: Features of the query image

        Returns:
            result: status, pose on success, and the 2D-3D working set with
                image domain (not undistorted) 2D points

        """
        if not self.is_initialized:
            return LocalizationResult(LocalizationStatus.DATABASE_NOT_INITIALIZED)

        success, matches = self.database.match(self.cfg.ratio_threshold, query_regions)
        if not success:
            return LocalizationResult(LocalizationStatus.MATCHING_FAILED)

        logger.info("#3D2d putative correspondences: %d", len(matches))

        # 2D-3D correspondences
        landmark_ids = self.database.landmark_ids_for(matches[:, 0])
        pt3d = self.scene.landmark_positions(landmark_ids)
        pt2d_original = np.asarray(
            query_regions.positions[matches[:, 1]], dtype=np.float64
        ).reshape(-1, 2)

        # the solver sees rectified points, the caller gets the original ones
        hint = resolve_intrinsic_hint(intrinsic, self.cfg.use_calibration_hint)
        pt2d = hint.correct(pt2d_original)

        resection = robust_resection(
            image_size,
            pt2d,
            pt3d,
            K=hint.K,
            max_iterations=self.cfg.ransac_iterations,
            confidence=self.cfg.ransac_confidence,
            threshold=self.cfg.reprojection_threshold,
            seed=self.cfg.random_seed,
        )

        resection_data = ResectionData(
            pt3d=pt3d,
            pt2d=pt2d_original,
            inliers=resection.inliers,
            projection_matrix=resection.P,
            error_max=resection.error_max,
            landmark_ids=landmark_ids,
            query_indices=matches[:, 1].copy(),
        )

        pose = None
        if resection.success:
            _, R, t = krt_from_p(resection.P)

            if self.cfg.refine_pose and hint.K is not None:
                inl = resection.inliers
                R, t = refine_pose_nonlinear(pt3d[inl], pt2d[inl], R, t, hint.K)
                P = projection_matrix(hint.K, R, t)
                errors = compute_reprojection_error(P, pt3d[inl], pt2d[inl])
                resection_data.projection_matrix = P
                resection_data.error_max = float(np.max(errors))

            pose = Pose(R=R, center=camera_center(R, t))

        logger.info(
            "Robust resection: status %s, #points used: %d, #points validated: %d, threshold: %.3f",
            resection.success,
            len(matches),
            len(resection.inliers),
            resection_data.error_max,
        )

        if pose is None:
            return LocalizationResult(
                LocalizationStatus.RESECTION_FAILED, resection_data=resection_data
            )
        return LocalizationResult(
            LocalizationStatus.SUCCESS, pose=pose, resection_data=resection_data
        )
