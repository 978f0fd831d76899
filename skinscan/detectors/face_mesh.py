"""MediaPipe Face Mesh landmark detection and a lazily-built detector handle."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, List, Optional

import numpy as np

from skinscan.types import DecodedImage, LandmarkSet, NormalizedLandmark

LOGGER = logging.getLogger("skinscan.detectors.face_mesh")


class FaceMeshDetector:
    """Wrapper around MediaPipe Face Mesh returning normalized landmarks for one face."""

    def __init__(
        self,
        refine_landmarks: bool = True,
        min_detection_confidence: float = 0.5,
    ) -> None:
        try:
            import mediapipe as mp
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "mediapipe is required for FaceMeshDetector. "
                "Install it via `pip install skinscan-analyzer[landmarks]`."
            ) from exc

        self.refine_landmarks = refine_landmarks
        self.min_detection_confidence = min_detection_confidence
        self._mesh = mp.solutions.face_mesh.FaceMesh(
            static_image_mode=True,
            max_num_faces=1,
            refine_landmarks=refine_landmarks,
            min_detection_confidence=min_detection_confidence,
        )
        # FaceMesh graphs are not safe to drive from several threads at once.
        self._lock = threading.Lock()
        LOGGER.info(
            "Loaded MediaPipe Face Mesh refine_landmarks=%s min_detection_confidence=%.2f",
            refine_landmarks,
            min_detection_confidence,
        )

    def detect(self, image: DecodedImage) -> LandmarkSet:
        rgb = np.ascontiguousarray(image.rgb)
        with self._lock:
            results = self._mesh.process(rgb)
        if not results.multi_face_landmarks:
            LOGGER.info("No face found in %dx%d image", image.width, image.height)
            return []
        face = results.multi_face_landmarks[0]
        landmarks: List[NormalizedLandmark] = [
            NormalizedLandmark(x=float(lm.x), y=float(lm.y)) for lm in face.landmark
        ]
        LOGGER.debug("Detected %d landmarks", len(landmarks))
        return landmarks

    def close(self) -> None:
        self._mesh.close()


class LandmarkDetectorHandle:
    """Builds a detector on first use and shares it across runs."""

    def __init__(self, factory: Callable[[], Any] = FaceMeshDetector) -> None:
        self._factory = factory
        self._detector: Optional[Any] = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._detector is not None

    def get(self) -> Any:
        with self._lock:
            if self._detector is None:
                LOGGER.info("Initialising landmark detector")
                self._detector = self._factory()
            return self._detector

    def detect_sync(self, image: DecodedImage) -> LandmarkSet:
        return self.get().detect(image)

    async def detect(self, image: DecodedImage, timeout: Optional[float] = 10.0) -> LandmarkSet:
        """Detect landmarks off the event loop; raises ``asyncio.TimeoutError`` past ``timeout``."""
        return await asyncio.wait_for(asyncio.to_thread(self.detect_sync, image), timeout)
