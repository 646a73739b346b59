import cv2
import numpy as np
from collections import deque
from typing import Deque, Optional, Tuple

from .protection import ProtectionState, Thresholds

Color = Tuple[int, int, int]

STATE_COLORS = {
    ProtectionState.SAFE: (0, 200, 0),
    ProtectionState.WARNING: (0, 200, 255),
    ProtectionState.BLOCKED: (0, 0, 255),
}


def color_for_state(state: ProtectionState) -> Color:
    return STATE_COLORS.get(state, (255, 255, 255))


def draw_text_block(img, lines, pos, color=(255, 255, 255), bg=(20, 20, 20), alpha=0.75):
    """Desenha bloco de texto multi-linha com fundo translúcido."""
    x, y = pos
    pad = 8
    lh = 22
    w = max(cv2.getTextSize(t, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 2)[0][0] for t in lines) + pad * 2
    h = lh * len(lines) + pad * 2
    overlay = img.copy()
    cv2.rectangle(overlay, (x, y), (x + w, y + h), bg, -1)
    cv2.addWeighted(overlay, alpha, img, 1 - alpha, 0, img)
    for i, t in enumerate(lines):
        cv2.putText(img, t, (x + pad, y + pad + lh * (i + 1) - 6), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)


def draw_bbox(img, bbox, color=(255, 200, 0)):
    if bbox is None:
        return
    x1, y1, x2, y2 = map(int, bbox)
    cv2.rectangle(img, (x1, y1), (x2, y2), color, 2)


class AreaHistory:
    """Buffer de pontos (t, área suavizada) para gráfico em tempo real."""

    def __init__(self, seconds: float = 30.0, bg_color: Color = (15, 15, 15)):
        self.seconds = seconds
        self.data: Deque[Tuple[float, float]] = deque()
        self.bg_color = bg_color

    def add(self, t: float, area: float):
        self.data.append((t, area))
        while self.data and (t - self.data[0][0]) > self.seconds:
            self.data.popleft()

    def plot_on(self, img, rect, th: Thresholds, state: ProtectionState):
        """Desenha a área e as linhas enter/exit dentro de rect=(x1,y1,x2,y2)."""
        x1, y1, x2, y2 = rect
        cv2.rectangle(img, (x1, y1), (x2, y2), self.bg_color, -1)
        cv2.rectangle(img, (x1, y1), (x2, y2), (140, 140, 140), 1)
        if len(self.data) < 2:
            cv2.putText(img, "Waiting for data", (x1 + 6, y1 + 22), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (220, 220, 220), 1)
            return
        times = np.array([p[0] for p in self.data])
        vals = np.array([p[1] for p in self.data])
        t_min, t_max = times.min(), times.max()
        # escala vertical cobre a área e a banda de histerese
        s_max = max(1e-3, float(vals.max()), th.enter) * 1.2
        span_t = max(1e-3, t_max - t_min)

        def to_y(v):
            return int(y2 - v / s_max * (y2 - y1))

        for level, color in ((th.enter, (0, 0, 255)), (th.exit, (0, 200, 255))):
            cv2.line(img, (x1, to_y(level)), (x2, to_y(level)), color, 1)
        pts = [(int(x1 + (t - t_min) / span_t * (x2 - x1)), to_y(v)) for t, v in zip(times, vals)]
        for i in range(1, len(pts)):
            cv2.line(img, pts[i - 1], pts[i], color_for_state(state), 2)
        cv2.putText(img, "Face area", (x1 + 4, y1 + 16), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (240, 240, 240), 1)


def status_lines(state: ProtectionState, smoothed: float, baseline: float, th: Thresholds,
                 skip: int, runtime_s: float) -> list[str]:
    return [
        f"State: {state.value}",
        f"Area: {smoothed:.4f} (baseline {baseline:.4f})",
        f"Enter/exit: {th.enter:.4f} / {th.exit:.4f}",
        f"Frame skip: {skip}",
        f"Time: {format_runtime(runtime_s)}",
    ]


def draw_status(frame, state: ProtectionState, smoothed: float, baseline: float, th: Thresholds,
                bbox, skip: int, runtime_s: float, message: Optional[str], history: AreaHistory):
    h, w = frame.shape[:2]
    draw_bbox(frame, bbox, color=color_for_state(state))
    draw_text_block(frame, status_lines(state, smoothed, baseline, th, skip, runtime_s), (10, 10))
    if message:
        draw_text_block(frame, [message], (10, h - 56), color=(230, 230, 230), bg=(0, 60, 90), alpha=0.65)
    history.plot_on(frame, (w - 270, h - 150, w - 10, h - 10), th, state)
    return frame


def draw_block_overlay(frame, message: str = "Too close! Move back to unlock the screen."):
    """Tela inteira opaca: nada do conteúdo original fica visível."""
    blocked = np.zeros_like(frame)
    h, w = blocked.shape[:2]
    size = cv2.getTextSize(message, cv2.FONT_HERSHEY_SIMPLEX, 0.8, 2)[0]
    cv2.putText(blocked, message, (max(10, (w - size[0]) // 2), h // 2), cv2.FONT_HERSHEY_SIMPLEX, 0.8,
                (255, 255, 255), 2)
    return blocked


def format_runtime(seconds: float) -> str:
    seconds = int(max(0, seconds))
    h = seconds // 3600
    m = (seconds % 3600) // 60
    s = seconds % 60
    return f"{h:02d}:{m:02d}:{s:02d}"
