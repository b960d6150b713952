"""Tests for drag classification and the drag mutator."""

from troads_canvas.drag import DragAction, DragConfig, apply_drag, classify_drag
from troads_canvas.layout import compact_group
from troads_canvas.models import CanvasNode, Edge, NodeKind, Point, index_nodes


def _canvas():
    """Group g at (250, 50) holding a and b; group h at (800, 50) holding c."""
    nodes = (
        CanvasNode("g", NodeKind.GROUP, Point(250, 50), width=400),
        CanvasNode("a", position=Point(20, 30), width=360, height=100, parent_id="g"),
        CanvasNode("b", position=Point(20, 145), width=360, height=100, parent_id="g"),
        CanvasNode("h", NodeKind.GROUP, Point(800, 50), width=400),
        CanvasNode("c", position=Point(20, 30), width=360, height=100, parent_id="h"),
    )
    nodes = compact_group(compact_group(nodes, "g"), "h")
    edges = (Edge("e1", "a", "c"), Edge("e2", "b", "c"))
    return nodes, edges


def _ids():
    return lambda: "new-g"


START = Point(20, 30)


def test_fixture_geometry() -> None:
    nodes, _ = _canvas()
    by_id = index_nodes(nodes)
    assert by_id["g"].height == 260
    assert by_id["h"].height == 150


class TestClassification:
    def test_small_move_is_click(self) -> None:
        nodes, edges = _canvas()
        result = apply_drag(nodes, edges, "a", START, Point(23, 33))
        assert result.action is DragAction.CLICK
        assert result.nodes == nodes
        assert result.edges == edges

    def test_center_on_own_border_snaps_back(self) -> None:
        nodes, edges = _canvas()
        # Center lands at x = 250 + 220 + 180 = 650, the right border of g
        result = apply_drag(nodes, edges, "a", START, Point(220, 50))
        assert result.action is DragAction.SNAP
        assert result.nodes == nodes

    def test_bottom_border_snaps_back(self) -> None:
        nodes, _ = _canvas()
        # Center y = 50 + 210 + 50 = 310, the bottom border of g
        assert classify_drag(nodes, "a", START, Point(20, 210)) is DragAction.SNAP

    def test_inside_other_group_merges(self) -> None:
        nodes, _ = _canvas()
        assert classify_drag(nodes, "a", START, Point(570, 50)) is DragAction.MERGE

    def test_outside_everything_splits(self) -> None:
        nodes, _ = _canvas()
        assert classify_drag(nodes, "a", START, Point(-600, 500)) is DragAction.SPLIT

    def test_groups_and_top_level_nodes_are_ignored(self) -> None:
        nodes, edges = _canvas()
        assert classify_drag(nodes, "g", Point(250, 50), Point(900, 900)) is DragAction.IGNORED
        loose = nodes + (CanvasNode("z", position=Point(0, 0)),)
        assert classify_drag(loose, "z", Point(0, 0), Point(500, 500)) is DragAction.IGNORED
        result = apply_drag(nodes, edges, "ghost", START, Point(500, 500))
        assert result.action is DragAction.IGNORED
        assert result.nodes == nodes

    def test_first_group_in_collection_order_wins(self) -> None:
        nodes, _ = _canvas()
        overlapping = CanvasNode("k", NodeKind.GROUP, Point(850, 60), width=400, height=300)
        first = (overlapping,) + nodes
        last = nodes + (overlapping,)
        assert apply_drag(first, (), "a", START, Point(570, 50)).target_group_id == "k"
        assert apply_drag(last, (), "a", START, Point(570, 50)).target_group_id == "h"

    def test_classification_is_deterministic(self) -> None:
        nodes, edges = _canvas()
        for end in (Point(23, 33), Point(220, 50), Point(570, 50), Point(-600, 500)):
            one = apply_drag(nodes, edges, "a", START, end, id_factory=_ids())
            two = apply_drag(nodes, edges, "a", START, end, id_factory=_ids())
            assert one == two


class TestMerge:
    def test_merge_reparents_and_restacks(self) -> None:
        nodes, edges = _canvas()
        result = apply_drag(nodes, edges, "a", START, Point(570, 50))
        assert result.action is DragAction.MERGE
        assert result.target_group_id == "h"
        by_id = index_nodes(result.nodes)

        assert by_id["a"].parent_id == "h"
        assert by_id["c"].position == Point(20, 30)
        assert by_id["a"].position == Point(20, 145)
        assert by_id["a"].is_last and not by_id["c"].is_last
        assert by_id["h"].height == 260

        assert by_id["b"].position == Point(20, 30)
        assert by_id["g"].height == 150

    def test_merge_into_other_group_drops_edges(self) -> None:
        nodes, edges = _canvas()
        result = apply_drag(nodes, edges, "a", START, Point(570, 50))
        assert [e.id for e in result.edges] == ["e2"]

    def test_reorder_within_own_group_keeps_edges(self) -> None:
        nodes, edges = _canvas()
        result = apply_drag(nodes, edges, "a", START, Point(20, 200))
        assert result.action is DragAction.MERGE
        assert result.target_group_id == "g"
        by_id = index_nodes(result.nodes)
        assert by_id["b"].position.y == 30
        assert by_id["a"].position.y == 145
        assert result.edges == edges

    def test_inputs_untouched(self) -> None:
        nodes, edges = _canvas()
        snapshot = (nodes, edges)
        apply_drag(nodes, edges, "a", START, Point(570, 50))
        assert (nodes, edges) == snapshot


class TestSplit:
    def test_split_creates_group_at_drop(self) -> None:
        nodes, edges = _canvas()
        result = apply_drag(nodes, edges, "a", START, Point(-600, 500), id_factory=_ids())
        assert result.action is DragAction.SPLIT
        assert result.new_group_id == "new-g"
        by_id = index_nodes(result.nodes)

        group = by_id["new-g"]
        assert group.is_group
        assert group.position == Point(-370, 520)
        assert group.width == 400
        assert group.height == 150

        leaf = by_id["a"]
        assert leaf.parent_id == "new-g"
        assert leaf.position == Point(20, 30)
        assert leaf.is_last

        assert by_id["b"].position.y == 30
        assert [e.id for e in result.edges] == ["e2"]

    def test_split_nudges_right_of_colliding_group(self) -> None:
        nodes, edges = _canvas()
        # Center (1250, 150) is right of h, but a 400-wide group there would overlap it
        result = apply_drag(nodes, edges, "a", START, Point(820, 50), id_factory=_ids())
        assert result.action is DragAction.SPLIT
        assert index_nodes(result.nodes)["new-g"].position == Point(1230, 70)

    def test_nudge_is_capped(self) -> None:
        nodes, edges = _canvas()
        result = apply_drag(
            nodes, edges, "a", START, Point(820, 50),
            config=DragConfig(max_nudge_iterations=0), id_factory=_ids(),
        )
        assert index_nodes(result.nodes)["new-g"].position == Point(1050, 70)

    def test_emptied_source_group_is_removed(self) -> None:
        nodes, edges = _canvas()
        result = apply_drag(nodes, edges, "c", START, Point(-1200, 600), id_factory=_ids())
        assert result.action is DragAction.SPLIT
        ids = {n.id for n in result.nodes}
        assert "h" not in ids
        assert "new-g" in ids
        assert result.edges == ()
