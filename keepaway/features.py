from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

BBox = Tuple[float, float, float, float]  # x1, y1, x2, y2 em pixels


@dataclass(frozen=True)
class Observation:
    """
    Uma leitura por frame aceito: rosto presente ou não e área normalizada.
    bbox e confidence só servem ao HUD; o núcleo ignora ambos.
    """
    face_detected: bool
    normalized_area: float = 0.0
    bbox: Optional[BBox] = None
    confidence: float = 0.0

    @classmethod
    def no_face(cls) -> "Observation":
        return cls(face_detected=False)

    @classmethod
    def face(cls, area: float, bbox: Optional[BBox] = None, confidence: float = 1.0) -> "Observation":
        return cls(True, clamp_area(area), bbox, confidence)


@dataclass(frozen=True)
class FaceCandidate:
    bbox: BBox
    confidence: float


def clamp_area(area: float) -> float:
    # NaN vira 0 (sem sinal útil)
    if area != area:
        return 0.0
    return float(min(1.0, max(0.0, area)))


def normalized_face_area(bbox: BBox, frame_shape: Sequence[int]) -> float:
    h, w = frame_shape[0], frame_shape[1]
    frame_area = float(max(1, w * h))
    x1, y1, x2, y2 = bbox
    face_area = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    return clamp_area(face_area / frame_area)


def select_primary_face(candidates: Iterable[FaceCandidate], min_confidence: float) -> Optional[FaceCandidate]:
    """Maior rosto acima do piso de confiança (múltiplos rostos: fica o mais próximo)."""
    kept = [c for c in candidates if c.confidence >= min_confidence]
    if not kept:
        return None
    areas = np.array([max(0.0, c.bbox[2] - c.bbox[0]) * max(0.0, c.bbox[3] - c.bbox[1]) for c in kept])
    return kept[int(np.argmax(areas))]


def observation_from_candidates(candidates: Iterable[FaceCandidate], frame_shape: Sequence[int],
                                min_confidence: float) -> Observation:
    best = select_primary_face(candidates, min_confidence)
    if best is None:
        return Observation.no_face()
    area = normalized_face_area(best.bbox, frame_shape)
    if area <= 0.0:
        return Observation.no_face()
    return Observation.face(area, best.bbox, best.confidence)
