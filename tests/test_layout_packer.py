"""Tests for layout_packer and finger_pull modules."""
from itertools import combinations

import numpy as np
import pytest

from conftest import rect_item
from finger_pull import FingerPullConfig, add_finger_pull, finger_pull_edge
from geometry_primitives import Contour, Unit
from layout_packer import (
    Layout,
    LayoutItem,
    boxes_clear,
    build_layout_items,
    hit_test,
    layout_item_from_contour,
    move_item,
    pack_items,
    rotate_item_clockwise,
)


class TestPacker:
    """Deterministic first-fit placement."""

    def test_two_squares_spaced(self, case_24x18):
        result = pack_items([rect_item("a", 5, 5), rect_item("b", 5, 5)], case_24x18)
        a, b = result.items
        assert (a.x, a.y) == (1.0, 1.0)
        assert (b.x, b.y) == (6.5, 1.0)
        ax, ay = a.center
        bx, by = b.center
        assert abs(ax - bx) >= 5.5 or abs(ay - by) >= 5.5
        assert result.overflow_ids == []

    def test_largest_first(self, case_24x18):
        result = pack_items(
            [rect_item("small", 1, 1), rect_item("big", 6, 6), rect_item("mid", 3, 3)],
            case_24x18,
        )
        assert [it.id for it in result.items] == ["big", "mid", "small"]
        assert (result.items[0].x, result.items[0].y) == (1.0, 1.0)

    def test_padded_boxes_never_overlap(self, case_24x18):
        sizes = [(5, 3), (4, 4), (2, 6), (3, 3), (7, 2), (1, 1), (2.3, 1.7), (4.1, 2.2)]
        items = [rect_item(f"i{k}", w, h) for k, (w, h) in enumerate(sizes)]
        result = pack_items(items, case_24x18)
        placed = [it for it in result.items if it.id not in result.overflow_ids]
        assert len(placed) == len(items)
        for a, b in combinations(placed, 2):
            assert boxes_clear(a.box, b.box, 0.5), (a.id, b.id)
        assert Layout(case_24x18, result.items).fit_percentage() == 100

    def test_packed_items_own_their_arrays(self, case_24x18):
        source = rect_item("a", 2, 2)
        source.cutouts = [np.array([[0.5, 0.5], [1.5, 0.5], [1.5, 1.5]])]
        (packed,) = pack_items([source], case_24x18).items
        packed.points[0] = [9, 9]
        packed.raw_points[0] = [9, 9]
        packed.cutouts[0][0] = [9, 9]
        assert source.points[0].tolist() == [0, 0]
        assert source.raw_points[0].tolist() == [0, 0]
        assert source.cutouts[0][0].tolist() == [0.5, 0.5]

    def test_overflow_goes_to_origin(self, case_24x18):
        result = pack_items([rect_item("huge", 30, 4)], case_24x18)
        assert result.overflow_ids == ["huge"]
        assert (result.items[0].x, result.items[0].y) == (1.0, 1.0)
        assert Layout(case_24x18, result.items).fit_percentage() == 0

    def test_full_case_overflows(self, case_24x18):
        items = [rect_item(f"s{k}", 10, 7) for k in range(5)]
        result = pack_items(items, case_24x18)
        assert len(result.overflow_ids) == 1

    def test_deterministic(self, case_24x18):
        items = [rect_item(f"i{k}", 1 + k * 0.7, 2) for k in range(6)]
        first = [(it.id, it.x, it.y) for it in pack_items(items, case_24x18).items]
        second = [(it.id, it.x, it.y) for it in pack_items(items, case_24x18).items]
        assert first == second

    def test_inputs_not_mutated(self, case_24x18):
        item = rect_item("a", 2, 2, x=9, y=9)
        pack_items([item], case_24x18)
        assert (item.x, item.y) == (9, 9)


class TestRotate:
    """Clockwise quarter turn about the item's box."""

    def test_point_mapping_and_center(self):
        tri = LayoutItem(id="t", name="t", points=[[0, 0], [4, 0], [4, 2]],
                         x=5, y=5, width=4, height=2)
        turned = rotate_item_clockwise(tri)
        assert turned.points.tolist() == [[0, 4], [0, 0], [2, 0]]
        assert (turned.width, turned.height) == (2, 4)
        assert turned.center == tri.center
        assert turned.rotation == 90

    def test_four_turns_identity(self):
        item = rect_item("a", 3, 1, x=4, y=4)
        item.points = np.array([[0, 0], [3, 0], [3, 1], [1, 1]], dtype=float)
        out = item
        for _ in range(4):
            out = rotate_item_clockwise(out)
        assert np.allclose(out.points, item.points)
        assert out.rotation == 0
        assert (out.x, out.y) == (item.x, item.y)

    def test_raw_points_follow(self):
        item = LayoutItem(id="a", name="a", points=[[0, 0], [2, 0], [2, 1], [0, 1]],
                          width=2, height=1, raw_points=[[0, 0], [2, 0], [2, 1]])
        turned = rotate_item_clockwise(item)
        assert turned.raw_points.tolist() == [[0, 2], [0, 0], [1, 0]]

    def test_layout_rotate_with_list_raw_points(self, case_24x18):
        item = LayoutItem(id="a", name="a", points=[[0, 0], [2, 0], [2, 1], [0, 1]],
                          width=2, height=1, raw_points=[[0, 0], [2, 0], [2, 1], [0, 1]])
        assert isinstance(item.raw_points, np.ndarray)
        turned = Layout(case_24x18, [item]).rotate("a")
        assert turned.raw_points.tolist() == [[0, 2], [0, 0], [1, 0], [1, 2]]


class TestManualEdits:
    """Drag, duplicate, delete and hit testing."""

    def test_drag_clamp(self):
        item = rect_item("a", 4, 2)
        moved = move_item(item, -10, -10)
        assert (moved.x, moved.y) == (-2.0, -1.0)
        assert move_item(item, 3, 4).box == (3, 4, 4, 2)

    def test_duplicate_ids_and_offsets(self, case_24x18):
        layout = Layout(case_24x18, [rect_item("a", 2, 2, x=3, y=3)])
        first = layout.duplicate("a")
        second = layout.duplicate("a")
        assert (first.id, first.x, first.y) == ("a_copy_1", 3.5, 3.5)
        assert second.id == "a_copy_2"
        assert len(layout) == 3

    def test_add_copies(self, case_24x18):
        layout = Layout(case_24x18, [rect_item("a", 2, 2, x=3, y=3)])
        copies = layout.add_copies("a", 3)
        assert [c.x for c in copies] == [3.5, 4.0, 4.5]
        assert len({c.id for c in layout.items}) == 4
        copies[0].points[0, 0] = 99
        assert layout.get("a").points[0, 0] == 0

    def test_delete(self, case_24x18):
        layout = Layout(case_24x18, [rect_item("a", 2, 2), rect_item("b", 2, 2)])
        layout.delete("a")
        assert [it.id for it in layout.items] == ["b"]
        with pytest.raises(KeyError):
            layout.delete("a")

    def test_rotate_and_move_in_layout(self, case_24x18):
        layout = Layout(case_24x18, [rect_item("a", 4, 2, x=5, y=5)])
        layout.rotate("a")
        assert (layout.get("a").width, layout.get("a").height) == (2, 4)
        layout.move("a", 1, 1)
        assert layout.is_complete()

    def test_hit_test_uses_outline(self):
        l_shape = LayoutItem(
            id="L", name="L", points=[[0, 0], [4, 0], [4, 1], [1, 1], [1, 4], [0, 4]],
            x=2, y=2, width=4, height=4,
        )
        assert hit_test([l_shape], 2.5, 5.0) is l_shape
        assert hit_test([l_shape], 5.0, 5.0) is None

    def test_hit_test_topmost(self):
        below = rect_item("below", 4, 4, x=0, y=0)
        above = rect_item("above", 4, 4, x=2, y=2)
        assert hit_test([below, above], 3, 3).id == "above"
        assert hit_test([below, above], 1, 1).id == "below"

    def test_json_shape(self, case_24x18):
        layout = Layout(case_24x18, [rect_item("a", 2, 1, x=1, y=1)])
        (entry,) = layout.to_json()
        assert set(entry) == {"id", "name", "points", "x", "y", "rotation", "width", "height", "depth"}
        assert entry["depth"] == 1.5
        assert LayoutItem.from_dict(entry).box == (1.0, 1.0, 2.0, 1.0)


class TestItemConstruction:
    """LayoutItems from calibrated contours."""

    def test_normalized(self, square_contour_in):
        item = layout_item_from_contour(square_contour_in, "item_1")
        assert item.points.min(axis=0).tolist() == [0.0, 0.0]
        assert (item.width, item.height) == (4.0, 2.0)
        assert item.name == "Wrench"
        assert item.depth == 1.5

    def test_pixel_contour_rejected(self):
        with pytest.raises(ValueError):
            layout_item_from_contour(Contour(points=[[0, 0], [1, 0], [1, 1]]), "x")

    def test_reference_objects_skipped(self, square_contour_in):
        card = Contour(points=square_contour_in.points, unit=Unit.INCH, name="Credit Card")
        coin = Contour(points=square_contour_in.points, unit=Unit.INCH, name="quarter")
        items = build_layout_items([card, square_contour_in, coin])
        assert [it.name for it in items] == ["Wrench"]
        assert items[0].id == "item_2"

    def test_cutouts_follow_origin(self):
        outer = np.array([[2, 2], [8, 2], [8, 6], [2, 6]], dtype=float)
        hole = np.array([[4, 3], [5, 3], [5, 4], [4, 4]], dtype=float)
        contour = Contour(points=outer, unit=Unit.INCH, name="Box", cutouts=[hole])
        item = layout_item_from_contour(contour, "b")
        assert item.cutouts[0].min(axis=0).tolist() == [2.0, 1.0]

    def test_finger_pull_grows_height(self, square_contour_in):
        item = layout_item_from_contour(
            square_contour_in, "w", finger_pull=FingerPullConfig(enabled=True),
        )
        assert item.height == pytest.approx(2.75)
        assert len(item.raw_points) == 4
        assert len(item.points) == 4 + 11


class TestFingerPull:
    """Notch geometry."""

    RECT = np.array([[0, 0], [4, 0], [4, 2], [0, 2]], dtype=float)

    def test_edge_choice(self):
        assert finger_pull_edge(4, 2) == "bottom"
        assert finger_pull_edge(2, 4) == "right"

    def test_bottom_arc(self):
        pts, idx = add_finger_pull(self.RECT, 4, 2, FingerPullConfig(enabled=True))
        assert idx == 2
        assert len(pts) == 15
        assert pts[:, 1].max() == pytest.approx(2.75)
        assert pts[:, 0].max() == 4.0

    def test_right_arc(self):
        pts, _ = add_finger_pull(self.RECT, 4, 2, FingerPullConfig(enabled=True), edge="right")
        assert pts[:, 0].max() == pytest.approx(4.75)

    def test_disabled(self):
        pts, idx = add_finger_pull(self.RECT, 4, 2, FingerPullConfig())
        assert np.array_equal(pts, self.RECT)
        assert idx == 0

    def test_unknown_edge(self):
        with pytest.raises(ValueError):
            add_finger_pull(self.RECT, 4, 2, FingerPullConfig(enabled=True), edge="middle")
