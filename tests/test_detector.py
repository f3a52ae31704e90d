import itertools

import numpy as np
import pytest

from conftest import StubModel
from person_reid.detector import PersonDetector, _iou_xywh, nms, pad_to_square, rescale_and_clamp
from person_reid.regions import Region


def make_output(rows, num_classes=3):
    """rows: (cx, cy, w, h, class_id, score) -> raw (1, 4 + classes, boxes) output."""
    out = np.zeros((1, 4 + num_classes, len(rows)), dtype=np.float32)
    for i, (cx, cy, w, h, cls, score) in enumerate(rows):
        out[0, :4, i] = (cx, cy, w, h)
        out[0, 4 + cls, i] = score
    return out


def detector_for(rows, **kwargs):
    model = StubModel(lambda blob: make_output(rows))
    return PersonDetector(model, **kwargs), model


# decode


def test_decode_keeps_only_confident_person_rows():
    det, _ = detector_for([])
    out = make_output(
        [
            (100, 100, 40, 80, 0, 0.9),   # person
            (200, 100, 40, 80, 1, 0.95),  # other class
            (300, 100, 40, 80, 0, 0.2),   # below threshold
            (400, 100, 40, 80, 0, 0.25),  # exactly at threshold
        ]
    )
    boxes, scores = det.decode(out)

    np.testing.assert_allclose(scores, [0.9, 0.25])
    np.testing.assert_allclose(boxes[0], [80, 60, 40, 80])
    np.testing.assert_allclose(boxes[1], [380, 60, 40, 80])


def test_decode_person_must_be_the_argmax_class():
    det, _ = detector_for([])
    out = make_output([(100, 100, 40, 80, 0, 0.6)])
    out[0, 4 + 2, 0] = 0.7  # another class scores higher on the same row
    boxes, scores = det.decode(out)
    assert boxes.shape == (0, 4)
    assert scores.shape == (0,)


def test_decode_accepts_2d_output_and_custom_person_class():
    det, _ = detector_for([], person_class_id=2)
    out = make_output([(50, 50, 10, 10, 2, 0.8), (60, 60, 10, 10, 0, 0.9)])[0]
    boxes, scores = det.decode(out)
    np.testing.assert_allclose(scores, [0.8])
    np.testing.assert_allclose(boxes[0], [45, 45, 10, 10])


def test_decode_rejects_bad_shape():
    det, _ = detector_for([])
    with pytest.raises(ValueError):
        det.decode(np.zeros((1, 4, 10), dtype=np.float32))


# nms


def test_nms_suppresses_overlap_and_keeps_disjoint():
    boxes = np.array([[0, 0, 10, 10], [1, 1, 10, 10], [50, 50, 10, 10]], dtype=np.float32)
    scores = np.array([0.8, 0.9, 0.5], dtype=np.float32)
    assert nms(boxes, scores, 0.25, 0.45) == [1, 2]


def test_nms_ties_keep_encounter_order():
    boxes = np.array([[0, 0, 10, 10], [100, 0, 10, 10], [0, 0, 10, 10]], dtype=np.float32)
    scores = np.array([0.5, 0.5, 0.5], dtype=np.float32)
    assert nms(boxes, scores, 0.25, 0.45) == [0, 1]


def test_nms_drops_low_scores_and_handles_empty():
    boxes = np.array([[0, 0, 10, 10]], dtype=np.float32)
    assert nms(boxes, np.array([0.1], dtype=np.float32), 0.25, 0.45) == []
    assert nms(np.zeros((0, 4), dtype=np.float32), np.zeros(0, dtype=np.float32), 0.25, 0.45) == []


def test_nms_iou_exactly_at_threshold_is_kept():
    # IoU of these two boxes is exactly 0.5
    boxes = np.array([[0, 0, 30, 10], [10, 0, 30, 10]], dtype=np.float32)
    scores = np.array([0.9, 0.8], dtype=np.float32)
    assert _iou_xywh(boxes[0], boxes[1:])[0] == pytest.approx(0.5)
    assert nms(boxes, scores, 0.25, 0.5) == [0, 1]
    assert nms(boxes, scores, 0.25, 0.45) == [0]


def test_nms_output_never_overlaps_above_threshold():
    rng = np.random.default_rng(42)
    xy = rng.uniform(0, 200, size=(300, 2))
    wh = rng.uniform(5, 80, size=(300, 2))
    boxes = np.concatenate([xy, wh], axis=1).astype(np.float32)
    scores = rng.uniform(0, 1, size=300).astype(np.float32)

    keep = nms(boxes, scores, 0.25, 0.45)

    assert keep
    assert all(scores[i] >= 0.25 for i in keep)
    assert list(scores[keep]) == sorted(scores[keep], reverse=True)
    for a, b in itertools.combinations(keep, 2):
        assert _iou_xywh(boxes[a], boxes[b : b + 1])[0] <= 0.45 + 1e-6


# padding and rescaling


def test_pad_to_square_places_frame_top_left():
    frame = np.full((100, 300, 3), 7, dtype=np.uint8)
    canvas, scale = pad_to_square(frame, 640)
    assert canvas.shape == (300, 300, 3)
    assert scale == pytest.approx(300 / 640)
    assert (canvas[:100] == 7).all()
    assert not canvas[100:].any()


@pytest.mark.parametrize(
    "frame_hw, expected",
    [
        ((240, 320), Region(40, 30, 50, 120)),     # smaller than model input
        ((640, 640), Region(100, 200, 60, 150)),   # equal
        ((1080, 1920), Region(900, 400, 120, 300)),  # larger
    ],
)
def test_rescale_round_trip(frame_hw, expected):
    fh, fw = frame_hw
    scale = max(fh, fw) / 640.0
    model_box = np.array([expected.x, expected.y, expected.width, expected.height], dtype=np.float32) / scale

    region = rescale_and_clamp(model_box, scale, fw, fh)

    for got, want in zip(region.as_list(), expected.as_list()):
        assert abs(got - want) <= 1


def test_rescale_clamps_to_frame():
    region = rescale_and_clamp(np.array([-10, -5, 100, 100], dtype=np.float32), 1.0, 60, 50)
    assert region == Region(0, 0, 60, 50)

    region = rescale_and_clamp(np.array([40, 30, 100, 100], dtype=np.float32), 1.0, 60, 50)
    assert region == Region(40, 30, 20, 20)


# detect


def test_detect_end_to_end_on_square_frame():
    rows = [
        (100, 100, 40, 80, 0, 0.9),
        (102, 101, 40, 80, 0, 0.8),  # overlaps the first one heavily
        (400, 300, 60, 120, 0, 0.5),
        (500, 500, 20, 20, 1, 0.99),  # not a person
    ]
    det, model = detector_for(rows)
    frame = np.random.default_rng(3).integers(0, 256, size=(640, 640, 3), dtype=np.uint8)

    cands = det.detect(frame, frame_index=7)

    blob = model.blobs[0]
    assert blob.shape == (1, 3, 640, 640)
    assert blob.min() >= 0.0 and blob.max() <= 1.0
    assert [c.region for c in cands] == [Region(80, 60, 40, 80), Region(370, 240, 60, 120)]
    assert [c.confidence for c in cands] == pytest.approx([0.9, 0.5])
    assert all(c.frame_index == 7 for c in cands)
    for c in cands:
        x1, y1, x2, y2 = c.region.xyxy
        np.testing.assert_array_equal(c.crop, frame[y1:y2, x1:x2])


def test_detect_scales_back_for_large_frame():
    det, _ = detector_for([(100, 100, 40, 80, 0, 0.9)])
    frame = np.zeros((720, 1280, 3), dtype=np.uint8)
    cands = det.detect(frame)
    assert [c.region for c in cands] == [Region(160, 120, 80, 160)]
    assert cands[0].crop.shape == (160, 80, 3)


def test_detect_drops_boxes_in_padding():
    # frame is 320 high, canvas is 640: a box at y >= 320 lies in the black padding
    det, _ = detector_for([(100, 500, 40, 40, 0, 0.9), (100, 100, 40, 40, 0, 0.8)])
    frame = np.zeros((320, 640, 3), dtype=np.uint8)
    cands = det.detect(frame)
    assert [c.region for c in cands] == [Region(80, 80, 40, 40)]


def test_detect_no_boxes_returns_empty():
    det, _ = detector_for([(100, 100, 40, 80, 0, 0.1)])
    assert det.detect(np.zeros((480, 640, 3), dtype=np.uint8)) == []
