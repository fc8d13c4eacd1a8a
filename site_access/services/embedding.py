from __future__ import annotations

import base64
import binascii
import logging
import math
import threading
from functools import lru_cache
from typing import Protocol

import cv2
import numpy as np

from ..core.config import get_settings
from ..exceptions import EmbeddingError, ValidationFailed

try:
    from insightface.app import FaceAnalysis
except Exception:  # pragma: no cover - optional runtime dependency
    FaceAnalysis = None

try:
    import face_recognition
except Exception:  # pragma: no cover - optional runtime dependency
    face_recognition = None

logger = logging.getLogger("site_access.embedding")


class EmbeddingProvider(Protocol):
    descriptor_length: int
    distance_threshold: float

    def extract(self, frame_bgr: np.ndarray) -> np.ndarray | None:
        ...


class ArcFaceEmbedder:
    descriptor_length = 512
    # Euclidean cutoff on unit vectors, equivalent to cosine similarity 0.62.
    distance_threshold = round(math.sqrt(2.0 - 2.0 * 0.62), 2)

    def __init__(self, det_size: tuple[int, int] = (640, 640)) -> None:
        if FaceAnalysis is None:
            raise EmbeddingError("insightface is required for ArcFace embeddings.")
        self._lock = threading.Lock()
        try:
            self.app = FaceAnalysis(name="buffalo_l")
            # CUDAExecutionProvider is used when onnxruntime-gpu is installed and a GPU is present.
            self.app.prepare(ctx_id=0, det_size=det_size)
        except Exception as exc:
            raise EmbeddingError(f"Failed to initialize ArcFace models: {exc}") from exc

    def extract(self, frame_bgr: np.ndarray) -> np.ndarray | None:
        try:
            with self._lock:
                faces = self.app.get(frame_bgr)
        except Exception as exc:
            raise EmbeddingError(f"Face extraction failed: {exc}") from exc
        if not faces:
            return None
        # Highest detection score face first.
        face = sorted(faces, key=lambda item: float(item.det_score), reverse=True)[0]
        emb = np.asarray(face.embedding, dtype=np.float32)
        norm = float(np.linalg.norm(emb))
        if norm <= 1e-9:
            return None
        return (emb / norm).astype(np.float32)


class DlibEmbedder:
    descriptor_length = 128
    # face_recognition's documented default tolerance.
    distance_threshold = 0.6

    def __init__(self, model: str = "hog") -> None:
        if face_recognition is None:
            raise EmbeddingError("face_recognition is required for dlib embeddings.")
        self.model = model

    def extract(self, frame_bgr: np.ndarray) -> np.ndarray | None:
        try:
            rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
            boxes = face_recognition.face_locations(rgb, model=self.model)
            if not boxes:
                return None
            # Largest face is the one closest to the guard's camera.
            box = max(boxes, key=lambda b: (b[2] - b[0]) * (b[1] - b[3]))
            encodings = face_recognition.face_encodings(rgb, [box])
        except Exception as exc:
            raise EmbeddingError(f"Face extraction failed: {exc}") from exc
        if not encodings:
            return None
        return np.asarray(encodings[0], dtype=np.float32)


def decode_image(payload: bytes | str) -> np.ndarray:
    """Decode JPEG/PNG bytes, or their base64 text (data URLs accepted), into a BGR frame."""
    if isinstance(payload, str):
        text = payload.split(",", 1)[1] if payload.startswith("data:") else payload
        try:
            payload = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationFailed("Image is not valid base64.") from exc

    buffer = np.frombuffer(payload, dtype=np.uint8)
    if buffer.size == 0:
        raise ValidationFailed("Image payload is empty.")
    frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if frame is None:
        raise ValidationFailed("Image could not be decoded.")
    return frame


@lru_cache(maxsize=1)
def get_embedding_provider() -> EmbeddingProvider:
    settings = get_settings()
    logger.info("Loading %s embedding provider", settings.embedding_backend)
    if settings.embedding_backend == "dlib":
        return DlibEmbedder()
    return ArcFaceEmbedder()
