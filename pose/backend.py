from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


# MediaPipe BlazePose landmark names, in model output order
BLAZEPOSE_NAMES: Tuple[str, ...] = (
    "nose",
    "left_eye_inner", "left_eye", "left_eye_outer",
    "right_eye_inner", "right_eye", "right_eye_outer",
    "left_ear", "right_ear",
    "mouth_left", "mouth_right",
    "left_shoulder", "right_shoulder",
    "left_elbow", "right_elbow",
    "left_wrist", "right_wrist",
    "left_pinky", "right_pinky",
    "left_index", "right_index",
    "left_thumb", "right_thumb",
    "left_hip", "right_hip",
    "left_knee", "right_knee",
    "left_ankle", "right_ankle",
    "left_heel", "right_heel",
    "left_foot_index", "right_foot_index",
)


class PoseSourceUnavailable(RuntimeError):
    """The pose source cannot produce poses at all (model missing, camera denied)."""


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    confidence: float
    name: str = ""


@dataclass(frozen=True)
class Pose:
    """Keypoints of one person at one instant, in pixel coordinates (y grows downward)."""

    keypoints: Tuple[Keypoint, ...]

    def get(self, name: str) -> Optional[Keypoint]:
        for kp in self.keypoints:
            if kp.name == name:
                return kp
        return None

    def __len__(self) -> int:
        return len(self.keypoints)


@dataclass(frozen=True)
class PoseSample:
    pose: Optional[Pose]
    timestamp: float


class PoseBackend:
    """
    Single-person pose source using MediaPipe BlazePose.

    - Keeps the model warm-loaded after construction
    - Accepts BGR frames (as from OpenCV)
    - Returns a Pose in pixel coordinates of the given frame, or None if no usable pose
    - Weak frames (every landmark below min_pose_score) are rejected as None
    """

    NUM_LANDMARKS = 33

    def __init__(
        self,
        model_complexity: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        min_pose_score: float = 0.6,
        pose_model: Optional[object] = None,
        smooth_landmarks: bool = True,
    ) -> None:
        """
        If pose_model is provided, it must expose a .process(np.ndarray[R,G,B]) -> result
        where result.pose_landmarks is either None or an object with .landmark list
        of items having attributes .x, .y and .visibility in [0, 1].
        """
        self.min_pose_score = float(min_pose_score)
        self._external_model = pose_model is not None
        if pose_model is not None:
            self._pose = pose_model
        else:
            try:
                import mediapipe as mp  # type: ignore
            except ImportError as exc:
                raise PoseSourceUnavailable(
                    "mediapipe is required for PoseBackend. Install with `pip install mediapipe`"
                ) from exc

            try:
                self._pose = mp.solutions.pose.Pose(
                    model_complexity=model_complexity,
                    smooth_landmarks=smooth_landmarks,
                    min_detection_confidence=min_detection_confidence,
                    min_tracking_confidence=min_tracking_confidence,
                )
            except Exception as exc:
                raise PoseSourceUnavailable(f"failed to load BlazePose model: {exc}") from exc

    def close(self) -> None:
        """Release underlying resources."""
        if self._external_model:
            return
        close_fn = getattr(self._pose, "close", None)
        if callable(close_fn):
            close_fn()

    def __enter__(self) -> "PoseBackend":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def infer(self, frame_bgr: np.ndarray) -> Optional[Pose]:
        """Run single-person pose detection on a BGR image frame."""
        if not isinstance(frame_bgr, np.ndarray) or frame_bgr.ndim < 2:
            raise ValueError("frame_bgr must be an HxWxC numpy array")

        height, width = frame_bgr.shape[:2]
        # Convert BGR (OpenCV) -> RGB without requiring cv2
        if frame_bgr.ndim == 3 and frame_bgr.shape[2] >= 3:
            frame_rgb = np.ascontiguousarray(frame_bgr[..., ::-1])
        else:
            frame_rgb = frame_bgr

        result = self._pose.process(frame_rgb)
        if result is None or getattr(result, "pose_landmarks", None) is None:
            return None

        landmarks = getattr(result.pose_landmarks, "landmark", None)
        if not landmarks:
            return None

        keypoints = []
        for idx, lm in enumerate(landmarks[: self.NUM_LANDMARKS]):
            x = float(getattr(lm, "x", np.nan))
            y = float(getattr(lm, "y", np.nan))
            conf = float(getattr(lm, "visibility", 0.0))
            if not (np.isfinite(x) and np.isfinite(y)):
                continue
            conf = 0.0 if np.isnan(conf) else max(0.0, min(1.0, conf))
            keypoints.append(
                Keypoint(x=x * width, y=y * height, confidence=conf, name=BLAZEPOSE_NAMES[idx])
            )

        if not keypoints or all(kp.confidence < self.min_pose_score for kp in keypoints):
            return None
        return Pose(tuple(keypoints))

    async def get_next_pose(self, frame_bgr: np.ndarray) -> Optional[Pose]:
        """Inference off the event loop; the caller owns timeouts and cadence."""
        return await asyncio.to_thread(self.infer, frame_bgr)
