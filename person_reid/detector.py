from __future__ import annotations

import logging
from typing import List, Tuple

import cv2
import numpy as np

from .regions import Candidate, Region, crop

logger = logging.getLogger(__name__)

# COCO class 0 = person
PERSON_CLASS_ID = 0


def _iou_xywh(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    a: [4] box, b: [M,4] boxes, all (x, y, w, h) -> IoU [M]
    """
    ax1, ay1 = a[0], a[1]
    ax2, ay2 = a[0] + a[2], a[1] + a[3]
    bx1, by1 = b[:, 0], b[:, 1]
    bx2, by2 = b[:, 0] + b[:, 2], b[:, 1] + b[:, 3]

    iw = np.maximum(0.0, np.minimum(ax2, bx2) - np.maximum(ax1, bx1))
    ih = np.maximum(0.0, np.minimum(ay2, by2) - np.maximum(ay1, by1))
    inter = iw * ih

    area_a = max(0.0, float(a[2])) * max(0.0, float(a[3]))
    area_b = np.maximum(0.0, b[:, 2]) * np.maximum(0.0, b[:, 3])
    union = area_a + area_b - inter
    return np.where(union > 0.0, inter / np.maximum(union, 1e-12), 0.0)


def nms(boxes: np.ndarray, scores: np.ndarray, score_thr: float, iou_thr: float) -> List[int]:
    """
    Standard greedy NMS over (x, y, w, h) boxes. Returns kept indices in keep
    order: descending score, equal scores in encounter order.
    """
    if boxes.size == 0:
        return []
    candidates = np.flatnonzero(scores >= score_thr)
    order = candidates[np.argsort(-scores[candidates], kind="stable")]
    keep: List[int] = []

    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]
        if rest.size == 0:
            break
        ious = _iou_xywh(boxes[i], boxes[rest])
        order = rest[ious <= iou_thr]

    return keep


def pad_to_square(frame: np.ndarray, input_size: int) -> Tuple[np.ndarray, float]:
    """
    Place `frame` at the top-left of a black square canvas of side max(H, W).
    Returns the canvas and the canvas -> model-input scale factor.
    """
    h, w = frame.shape[:2]
    side = max(h, w)
    canvas = np.zeros((side, side) + frame.shape[2:], dtype=frame.dtype)
    canvas[:h, :w] = frame
    return canvas, side / float(input_size)


def rescale_and_clamp(
    box: np.ndarray, scale: float, frame_width: int, frame_height: int
) -> Region:
    """Map an (x, y, w, h) model-input box back to frame pixels, clamped to the frame."""
    x, y, w, h = [int(round(float(v) * scale)) for v in box]
    return Region(x, y, max(0, w), max(0, h)).clamped(frame_width, frame_height)


class PersonDetector:
    """
    Person detector over a raw YOLOv8-style output head.

    The model sees the frame padded to a square and resized to
    `input_size` x `input_size`. Its output is (4 + classes, boxes): centre
    x/y, width, height in model-input pixels followed by one score per class.
    """

    def __init__(
        self,
        model,
        input_size: int = 640,
        conf_threshold: float = 0.25,
        iou_threshold: float = 0.45,
        person_class_id: int = PERSON_CLASS_ID,
    ):
        self.model = model
        self.input_size = int(input_size)
        self.conf_threshold = float(conf_threshold)
        self.iou_threshold = float(iou_threshold)
        self.person_class_id = int(person_class_id)

    def decode(self, output: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Raw output -> person boxes (x, y, w, h) in model-input pixels and their
        scores, before suppression.
        """
        out = np.asarray(output, dtype=np.float32)
        if out.ndim == 3:
            out = out[0]
        if out.ndim != 2 or out.shape[0] < 5:
            raise ValueError(f"unexpected detection output shape {np.shape(output)}")

        rows = out.T
        class_scores = rows[:, 4:]
        class_ids = np.argmax(class_scores, axis=1)
        confs = class_scores[np.arange(rows.shape[0]), class_ids]

        mask = (confs >= self.conf_threshold) & (class_ids == self.person_class_id)
        cx, cy, w, h = rows[mask, 0], rows[mask, 1], rows[mask, 2], rows[mask, 3]
        boxes = np.stack([cx - 0.5 * w, cy - 0.5 * h, w, h], axis=1)
        return boxes, confs[mask]

    def detect(self, frame_bgr: np.ndarray, frame_index: int = 0) -> List[Candidate]:
        fh, fw = frame_bgr.shape[:2]
        canvas, scale = pad_to_square(frame_bgr, self.input_size)

        blob = cv2.dnn.blobFromImage(
            canvas,
            scalefactor=1.0 / 255.0,
            size=(self.input_size, self.input_size),
            mean=(0.0, 0.0, 0.0),
            swapRB=True,
            crop=False,
            ddepth=cv2.CV_32F,
        )
        boxes, scores = self.decode(self.model.run(blob))
        keep = nms(boxes, scores, self.conf_threshold, self.iou_threshold)

        out: List[Candidate] = []
        for i in keep:
            region = rescale_and_clamp(boxes[i], scale, fw, fh)
            if region.is_empty:
                continue
            out.append(Candidate(frame_index, region, crop(frame_bgr, region), float(scores[i])))

        logger.debug("frame %d: %d raw person boxes, %d kept", frame_index, len(scores), len(out))
        return out
