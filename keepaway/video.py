import functools
import logging
import os
import threading
import time
import urllib.request
from typing import List

import cv2
import mediapipe as mp

from .config import Config
from .features import FaceCandidate, Observation, observation_from_candidates
from .session import FrameSlot, SourceError

_LOGGER = logging.getLogger(__name__)


class VideoStream:
    def __init__(self, cfg: Config):
        cv2.setUseOptimized(True)
        self.cfg = cfg
        self.cap = cv2.VideoCapture(cfg.device_index)
        self.cap.set(cv2.CAP_PROP_FPS, cfg.fps)
        if cfg.buffer_size is not None:
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, cfg.buffer_size)
        if cfg.frame_width:
            self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, cfg.frame_width)
        if cfg.frame_height:
            self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg.frame_height)
        if not self.cap.isOpened():
            self.cap.release()
            raise SourceError(f"Não consegui abrir a câmera: {cfg.device_index}")
        self._failures = 0

    def read(self):
        while True:
            ok, frame = self.cap.read()
            if ok and frame is not None:
                break
            self._failures += 1
            if self._failures >= 3:
                raise SourceError("Falha ao ler da webcam.")
            time.sleep(0.02)  # breve backoff antes de tentar novamente
        self._failures = 0
        if self.cfg.mirror:
            frame = cv2.flip(frame, 1)
        return frame

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def release(self):
        self.cap.release()


TASK_MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_detector/blaze_face_short_range/float16/latest/blaze_face_short_range.tflite"


def _download_model(dst_path: str):
    os.makedirs(os.path.dirname(dst_path), exist_ok=True)
    if not os.path.exists(dst_path):
        urllib.request.urlretrieve(TASK_MODEL_URL, dst_path)
    return dst_path


class FaceProcessor:
    """
    Detecção facial (BlazeFace via MediaPipe): só bbox + confiança, sem
    landmarks nem identidade. Nenhuma imagem sai daqui.
    """

    def __init__(self, min_confidence: float = 0.5):
        self.min_confidence = min_confidence
        self.using_solutions = False

        if hasattr(mp, "solutions"):
            try:
                # confiança mínima baixa aqui; o piso real é aplicado em features
                self.detector = mp.solutions.face_detection.FaceDetection(
                    model_selection=0, min_detection_confidence=0.1
                )
                self.using_solutions = True
            except Exception:
                self.using_solutions = False

        if not self.using_solutions:
            # fallback: MediaPipe Tasks FaceDetector
            from mediapipe.tasks import python as mp_python
            from mediapipe.tasks.python import vision as mp_vision
            package_dir = os.path.dirname(mp.__file__)
            target_abs = os.path.join(package_dir, "blaze_face_short_range.tflite")
            _download_model(target_abs)
            with open(target_abs, "rb") as f:
                model_bytes = f.read()
            base_opts = mp_python.BaseOptions(model_asset_buffer=model_bytes)
            opts = mp_vision.FaceDetectorOptions(
                base_options=base_opts,
                running_mode=mp_vision.RunningMode.IMAGE,
                min_detection_confidence=0.1,
            )
            self.detector = mp_vision.FaceDetector.create_from_options(opts)

    def candidates(self, frame) -> List[FaceCandidate]:
        h, w = frame.shape[:2]
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        out: List[FaceCandidate] = []
        if self.using_solutions:
            results = self.detector.process(rgb)
            for det in results.detections or []:
                box = det.location_data.relative_bounding_box
                x1, y1 = box.xmin * w, box.ymin * h
                out.append(FaceCandidate((x1, y1, x1 + box.width * w, y1 + box.height * h), float(det.score[0])))
            return out
        # tasks API
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = self.detector.detect(mp_image)
        for det in result.detections:
            bb = det.bounding_box
            score = det.categories[0].score if det.categories else 0.0
            out.append(FaceCandidate(
                (bb.origin_x, bb.origin_y, bb.origin_x + bb.width, bb.origin_y + bb.height), float(score)
            ))
        return out

    def observe(self, frame) -> Observation:
        try:
            found = self.candidates(frame)
        except Exception as err:
            # erro do detector derruba a fonte; a sessão decide se tenta de novo
            raise SourceError(f"Falha na detecção facial: {err}") from err
        obs = observation_from_candidates(found, frame.shape, self.min_confidence)
        _LOGGER.debug("Detecção: rosto=%s área=%.4f conf=%.2f", obs.face_detected, obs.normalized_area, obs.confidence)
        return obs

    def close(self):
        self.detector.close()


class CameraObservationSource:
    """
    Thread de captura publica frames num FrameSlot (no máximo um em voo);
    next() devolve uma observação preguiçosa do frame mais recente, para que
    a detecção só rode quando o sampler aceitar.
    """

    def __init__(self, cfg: Config):
        self.stream = VideoStream(cfg)
        try:
            self.processor = FaceProcessor(cfg.detection_threshold)
        except Exception as err:
            # download do modelo ou init do MediaPipe falhou: câmera não pode ficar presa
            self.stream.release()
            raise SourceError(f"Não consegui iniciar o detector facial: {err}") from err
        self.slot = FrameSlot()
        self.last_frame = None
        self._error: Exception | None = None
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._capture, name="keepaway-capture", daemon=True)
        self._thread.start()

    def _capture(self):
        while not self._stop.is_set():
            try:
                frame = self.stream.read()
            except SourceError as err:
                self._error = err
                return
            self.slot.offer(frame)

    def next(self, timeout: float):
        frame = self.slot.take(timeout)
        if frame is None:
            if self._error is not None:
                raise SourceError(str(self._error))
            return None
        self.last_frame = frame
        return functools.partial(self.processor.observe, frame)

    def close(self):
        self._stop.set()
        self._thread.join(timeout=1.0)
        self.stream.release()
        self.processor.close()
        _LOGGER.info("Câmera liberada (frames descartados na origem: %d)", self.slot.dropped)
