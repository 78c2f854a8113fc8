import pytest
from shapely.geometry import box

from conftest import IRREGULAR_SHAPES, cell_tracts, grid_tracts
from geodistrict.algos.adjacency import GeometricAdjacency, is_contiguous
from geodistrict.algos.bisect import (
    axis_for_depth,
    bisect,
    connected_prefixes,
    contiguous_cut,
    cut_index,
    make_group,
    split_counts,
    split_group,
)
from geodistrict.algos.model import LATITUDE, LONGITUDE, NO_AXIS, BisectionTree, DivisionInputError, Split, Terminal
from geodistrict.data.tracts import Tract, build_tract_set


# -----------------------------
# Split arithmetic
# -----------------------------

def test_odd_split_law():
    counts, ratios = split_counts(13)
    assert counts == (6, 7)
    assert ratios == (6 / 13, 7 / 13)


def test_even_split():
    assert split_counts(10) == ((5, 5), (0.5, 0.5))
    assert split_counts(2) == ((1, 1), (0.5, 0.5))


def test_split_counts_rejects_terminal():
    with pytest.raises(ValueError):
        split_counts(1)


def test_axis_alternates_from_latitude():
    assert [axis_for_depth(d) for d in range(4)] == [LATITUDE, LONGITUDE, LATITUDE, LONGITUDE]


# -----------------------------
# Cut index
# -----------------------------

def test_cut_reaches_target_share():
    assert cut_index([1, 1, 1, 1], 0.5, 1, 1) == 2
    assert cut_index([10, 1, 1, 10], 0.5, 1, 1) == 2


def test_cut_steps_back_when_closer():
    # target 8.5: stopping after 2 tracts (7) is closer than after 3 (17)
    assert cut_index([3, 4, 10, 0], 0.5, 1, 1) == 2
    # target 5.5: after 1 tract (5) beats after 2 (7)
    assert cut_index([5, 2, 4], 0.5, 1, 1) == 1


def test_cut_exact_tie_prefers_earlier():
    # target 50: 50 short after 3 tracts, 50 over after 4 -> equal gap, step back
    assert cut_index([0, 0, 0, 100, 0, 0], 0.5, 1, 1) == 3


def test_cut_is_clamped_to_district_counts():
    assert cut_index([0, 0, 0, 100], 0.5, 2, 2) == 2
    assert cut_index([100, 0, 0, 0], 0.5, 2, 2) == 2
    assert cut_index([100, 0, 0, 0, 0], 1 / 3, 1, 2) == 1


def test_zero_population_cuts_by_count():
    assert cut_index([0] * 8, 0.5, 2, 2) == 4
    assert cut_index([0] * 10, 0.5, 1, 1) == 5
    assert cut_index([0] * 13, 6 / 13, 6, 7) == 6


def test_cut_needs_enough_tracts():
    with pytest.raises(DivisionInputError):
        cut_index([1, 2], 0.5, 2, 1)


# -----------------------------
# Worklist
# -----------------------------

def test_target_one_is_a_single_terminal(grid4):
    out = bisect(grid4, range(16), 1)
    assert len(out.steps) == 1
    terms = out.terminals()
    assert len(terms) == 1
    assert sorted(terms[0].tracts) == list(range(16))
    assert isinstance(out.tree.nodes[terms[0].group_id], Terminal)


def test_bisect_into_four(grid4):
    adj = GeometricAdjacency(grid4)
    out = bisect(grid4, range(16), 4, adj)

    assert [s.step for s in out.steps] == [0, 1, 2]
    assert [s.total_groups for s in out.steps] == [1, 2, 4]
    assert all(s.total_districts == 4 for s in out.steps)
    assert out.steps[1].axis == LATITUDE
    assert out.steps[2].axis == LONGITUDE

    terms = out.terminals()
    assert [g.start_district_number for g in terms] == [1, 2, 3, 4]
    assert [g.population for g in terms] == [400, 400, 400, 400]
    assert sorted(t for g in terms for t in g.tracts) == list(range(16))
    for g in terms:
        assert is_contiguous(g.tracts, adj)


def test_children_targets_sum_to_parent(make_grid):
    ts = make_grid(2, 13)
    adj = GeometricAdjacency(ts)
    out = bisect(ts, range(len(ts)), 13, adj)

    for node in out.tree.nodes.values():
        if isinstance(node, Split):
            a, b = (out.tree.groups[c] for c in node.children)
            assert a.target_district_count + b.target_district_count == node.group.target_district_count
            assert a.start_district_number == node.group.start_district_number
            assert b.end_district_number == node.group.end_district_number

    root = out.tree.nodes[out.tree.root_id]
    assert isinstance(root, Split)
    assert root.ratio == (6 / 13, 7 / 13)
    a, b = out.tree.children_of(root.group.group_id)
    assert (a.target_district_count, b.target_district_count) == (6, 7)
    assert (a.population, b.population) == (1200, 1400)

    terms = out.terminals()
    assert len(terms) == 13
    assert all(len(g.tracts) == 2 for g in terms)


def test_zero_population_quartiles(make_grid):
    ts = make_grid(4, 4, pop=0)
    out = bisect(ts, range(16), 4, GeometricAdjacency(ts))
    assert sorted(len(g.tracts) for g in out.terminals()) == [4, 4, 4, 4]


def test_bisect_validates_counts(grid4):
    with pytest.raises(DivisionInputError):
        bisect(grid4, [0, 1, 2], 4)
    with pytest.raises(DivisionInputError):
        bisect(grid4, range(16), 0)


def test_history_lines_are_prefixed(grid4):
    out = bisect(grid4, range(16), 2, label="county 17031")
    assert out.history and all(line.startswith("county 17031: ") for line in out.history)
    assert out.steps[0].description.startswith("county 17031: ")


# -----------------------------
# Contiguous cut search
# -----------------------------

def test_connected_prefixes_on_a_row(make_grid):
    ts = make_grid(1, 5)
    adj = GeometricAdjacency(ts)
    assert connected_prefixes([0, 1, 3, 4, 2], adj).tolist() == [True, True, True, False, False, True]


def test_contiguous_cut_moves_to_nearest_working_cut(make_grid):
    ts = make_grid(1, 5)
    adj = GeometricAdjacency(ts)
    # {0, 1, 3} is split; {0, 1} | {3, 4, 2} is the closest cut that works
    assert contiguous_cut([0, 1, 3, 4, 2], 3, 1, 4, adj) == 2
    assert contiguous_cut([0, 1, 2, 3, 4], 3, 1, 4, adj) == 3


def test_contiguous_cut_keeps_population_cut_when_nothing_works():
    tracts = grid_tracts(1, 2) + [
        Tract("17", "001", "900000", 100, box(-90.0, 39.5, -89.5, 40.0)),
        Tract("17", "001", "900001", 100, box(-89.5, 39.5, -89.0, 40.0)),
    ]
    ts = build_tract_set(tracts)
    adj = GeometricAdjacency(ts)
    assert contiguous_cut([0, 2, 1, 3], 2, 1, 3, adj) == 2
    assert contiguous_cut([0, 2, 1, 3], 2, 1, 3, None) == 2


@pytest.mark.parametrize("shape", sorted(IRREGULAR_SHAPES))
@pytest.mark.parametrize("target", [2, 3, 5])
def test_split_group_children_contiguous_when_possible(shape, target):
    ts = build_tract_set(cell_tracts(IRREGULAR_SHAPES[shape](), pop=lambda r, c: 100 + (r * 7 + c * 13) % 50))
    adj = GeometricAdjacency(ts)
    for depth in (0, 1):
        tree = BisectionTree()
        root = make_group(tree, ts, range(len(ts)), target, direction=NO_AXIS, start=1, depth=depth)
        split_group(tree, ts, root, adj)
        a, b = tree.children_of(root.group_id)
        both = is_contiguous(a.tracts, adj) and is_contiguous(b.tracts, adj)

        order = list(a.tracts) + list(b.tracts)
        first, second = a.target_district_count, b.target_district_count
        possible = any(
            is_contiguous(order[:k], adj) and is_contiguous(order[k:], adj)
            for k in range(first, len(order) - second + 1)
        )
        assert both == possible
