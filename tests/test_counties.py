import numpy as np

from geodistrict.algos.adjacency import GeometricAdjacency, is_contiguous
from geodistrict.algos.counties import assign_counties, group_by_county


def _halves(r, c):
    return "001" if c < 2 else "003"


def test_group_by_county_sorted_by_population(make_grid):
    ts = make_grid(4, 4, pop=lambda r, c: 100 if c < 2 else 50, county=_halves)
    counties = group_by_county(ts)
    assert [c.county_key for c in counties] == ["17001", "17003"]
    assert [c.population for c in counties] == [800, 400]
    assert counties[0].tracts == (0, 1, 4, 5, 8, 9, 12, 13)
    assert counties[0].bounds.west == -100.0
    assert counties[0].bounds.east == -99.0


def test_group_by_county_ties_by_key(make_grid):
    ts = make_grid(2, 2, county=lambda r, c: "009" if c == 0 else "003")
    assert [c.county_key for c in group_by_county(ts)] == ["17003", "17009"]


def test_counties_map_one_to_one(make_grid):
    ts = make_grid(4, 4, county=_halves)
    out = assign_counties(ts, group_by_county(ts), 2, GeometricAdjacency(ts))
    assert out.split_counties == []
    assert set(out.labels[[0, 1, 4, 5, 8, 9, 12, 13]]) == {1}
    assert set(out.labels[[2, 3, 6, 7, 10, 11, 14, 15]]) == {2}


def test_large_county_is_subdivided(make_grid):
    # county 001 (left half) holds 3/4 of the population -> 3 districts
    ts = make_grid(4, 4, pop=lambda r, c: 150 if c < 2 else 50, county=_halves)
    adj = GeometricAdjacency(ts)
    out = assign_counties(ts, group_by_county(ts), 4, adj)

    assert out.split_counties == ["17001"]
    assert sorted(set(out.labels.tolist())) == [1, 2, 3, 4]
    right = out.labels[[2, 3, 6, 7, 10, 11, 14, 15]]
    assert set(right.tolist()) == {4}
    for d in (1, 2, 3, 4):
        assert is_contiguous(np.where(out.labels == d)[0].tolist(), adj)
    assert out.steps  # county bisection levels recorded


def test_small_counties_go_to_least_populated(make_grid):
    # four counties, one per row; rows 0/1 big, rows 2/3 small
    pops = {0: 300, 1: 300, 2: 50, 3: 40}
    ts = make_grid(4, 4, pop=lambda r, c: pops[r], county=lambda r, c: f"00{r}")
    out = assign_counties(ts, group_by_county(ts), 2, GeometricAdjacency(ts))
    # row 0 -> 1, row 1 -> 2, row 2 -> 1 (tie, lowest id), row 3 -> 2 (now smaller)
    assert [int(out.labels[r * 4]) for r in range(4)] == [1, 2, 1, 2]


def test_each_county_worth_two_districts(make_grid):
    ts = make_grid(4, 4, county=_halves)
    adj = GeometricAdjacency(ts)
    out = assign_counties(ts, group_by_county(ts), 4, adj)
    assert out.split_counties == ["17001", "17003"]
    assert set(out.labels[[0, 1, 4, 5, 8, 9, 12, 13]].tolist()) == {1, 2}
    assert sorted(np.bincount(out.labels)[1:].tolist()) == [4, 4, 4, 4]


def test_empty_districts_are_filled_geographically(make_grid):
    # three equal counties (one per row) rounding to one district each, four wanted
    ts = make_grid(3, 4, county=lambda r, c: f"00{r}")
    adj = GeometricAdjacency(ts)
    out = assign_counties(ts, group_by_county(ts), 4, adj)
    assert out.labels.tolist() == [1, 1, 4, 4, 2, 2, 2, 2, 3, 3, 3, 3]
    assert any("to fill empty district 4" in line for line in out.history)


def test_zero_population_counties_take_one_district_each(make_grid):
    ts = make_grid(4, 4, pop=0, county=_halves)
    out = assign_counties(ts, group_by_county(ts), 4, GeometricAdjacency(ts))
    assert sorted(np.bincount(out.labels)[1:].tolist()) == [4, 4, 4, 4]
