import pytest

from sheet_scanner.align_core import find_and_correct
from sheet_scanner.models import BubbleCandidate, Point, layout_for
from sheet_scanner.tools.bubble_detector import answer_region
from sheet_scanner.tools.question_grouper import (
    find_row_timing_marks,
    group_by_timing_marks,
    group_by_y_clusters,
    group_questions,
    select_best_spaced,
    split_rows,
)


def b(x, y, darkness=0.05):
    return BubbleCandidate(x=float(x), y=float(y), radius=12.0, darkness=darkness, area=452.0, circularity=0.9)


def test_best_spacing_keeps_ends_and_nearest_interior():
    row = [b(x, 0) for x in (0, 38, 40, 80, 120, 125, 160)]
    picked = select_best_spaced(row, 5)
    assert [p.x for p in picked] == [0.0, 40.0, 80.0, 120.0, 160.0]


def test_best_spacing_leaves_short_rows_alone():
    row = [b(80, 0), b(0, 0)]
    assert [p.x for p in select_best_spaced(row, 5)] == [0.0, 80.0]


def test_split_rows_on_gap():
    column = [b(0, y) for y in (100, 102, 160, 161, 300)]
    rows = split_rows(column, gap=14.4)
    assert [len(r) for r in rows] == [2, 2, 1]


class TestYClusters:
    def test_perfect_grid_is_column_major(self, bubble_grid):
        bubbles = bubble_grid([0] * 20)
        groups = group_questions(bubbles, 20, 5)
        assert len(groups) == 20
        assert all(len(g) == 5 for g in groups)
        # column 1 top to bottom, then column 2
        assert [g[0].y for g in groups[:10]] == [100.0 + r * 60 for r in range(10)]
        assert groups[10][0].x == 600.0
        assert groups[10][0].y == 100.0
        for g in groups:
            assert [x.x for x in g] == sorted(x.x for x in g)

    def test_row_missing_one_bubble_is_kept(self, bubble_grid):
        bubbles = [x for x in bubble_grid([0] * 20) if not (x.y == 160.0 and x.x == 220.0)]
        groups = group_by_y_clusters(bubbles, layout_for(20), 5)
        assert len(groups) == 20
        assert len(groups[1]) == 4

    def test_row_missing_two_bubbles_is_dropped(self, bubble_grid):
        bubbles = [x for x in bubble_grid([0] * 20) if not (x.y == 160.0 and x.x in (180.0, 220.0))]
        groups = group_by_y_clusters(bubbles, layout_for(20), 5)
        assert len(groups) == 19

    def test_overfull_row_is_trimmed(self, bubble_grid):
        bubbles = bubble_grid([0] * 20) + [b(158, 100)]
        groups = group_by_y_clusters(bubbles, layout_for(20), 5)
        assert len(groups[0]) == 5
        assert [x.x for x in groups[0]] == [100.0, 140.0, 180.0, 220.0, 260.0]

    def test_no_bubbles(self):
        assert group_questions([], 20) == []

    def test_output_capped_at_total(self, bubble_grid):
        bubbles = bubble_grid([0] * 24, rows=12)
        assert len(group_questions(bubbles, 20, 5)) == 20


class TestTimingMarks:
    def test_rows_follow_marks(self, bubble_grid):
        bubbles = bubble_grid([0] * 20)
        marks = [Point(60.0, 100.0 + r * 60) for r in range(10)] + \
                [Point(560.0, 100.0 + r * 60) for r in range(10)]
        groups = group_by_timing_marks(bubbles, marks, layout_for(20), 5, image_width=1000)
        assert len(groups) == 20
        assert all(len(g) == 5 for g in groups)
        assert groups[0][0].x == 100.0
        assert groups[10][0].x == 600.0

    def test_mark_without_bubbles_yields_no_group(self, bubble_grid):
        bubbles = bubble_grid([0] * 20)
        groups = group_by_timing_marks(bubbles, [Point(60.0, 900.0)], layout_for(20), 5, image_width=1000)
        assert groups == []

    def test_bubble_on_the_mark_is_not_an_option(self, bubble_grid):
        bubbles = bubble_grid([0] * 20) + [b(60, 100)]
        groups = group_by_timing_marks(bubbles, [Point(60.0, 100.0)], layout_for(20), 5, image_width=1000)
        assert [x.x for x in groups[0]] == [100.0, 140.0, 180.0, 220.0, 260.0]

    def test_page_without_marks_falls_back(self, blank_image, bubble_grid):
        groups = group_questions(bubble_grid([0] * 20), 20, 5, image=blank_image)
        assert len(groups) == 20
        assert groups[10][0].x == 600.0


class TestTimingMarkSearch:
    def test_option_a_bubbles_are_not_marks(self, template_sheet):
        for filled in (0, 1):
            corrected, corners = find_and_correct(template_sheet(20, [filled] * 20))
            assert corners is not None
            assert find_row_timing_marks(corrected, layout_for(20), 20) == []

    def test_printed_marks_sit_before_option_a(self, template_sheet):
        corrected, _ = find_and_correct(template_sheet(20, [0] * 20, timing_marks=True))
        marks = find_row_timing_marks(corrected, layout_for(20), 20)
        assert len(marks) == 20
        h, w = corrected.shape[:2]
        region = answer_region(w, h, layout_for(20), 5)
        assert all(m.x < region.option_x(0, 0) - region.expected_radius for m in marks[:10])
        assert all(region.option_x(0, 4) < m.x < region.option_x(1, 0) for m in marks[10:])

    @pytest.mark.parametrize("total", [50, 100])
    def test_one_mark_per_row_on_larger_layouts(self, template_sheet, total):
        corrected, _ = find_and_correct(template_sheet(total, [0] * total, timing_marks=True))
        assert len(find_row_timing_marks(corrected, layout_for(total), total)) == total
