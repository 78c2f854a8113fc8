import numpy as np
import pytest
from shapely.geometry import MultiPolygon, Polygon, box

from geodistrict.algos.geometry import (
    Bounds,
    extract_coordinates,
    group_bounds,
    group_centroid,
    tract_bounds,
    tract_centroid,
)

SQUARE = Polygon([(0, 0), (2, 0), (2, 2), (0, 2), (0, 0)])


def test_centroid_is_vertex_mean_including_closing_point():
    # 5 vertices (closing point repeated): x = (0+2+2+0+0)/5, y = (0+0+2+2+0)/5
    lat, lng = tract_centroid(SQUARE)
    assert lat == pytest.approx(0.8)
    assert lng == pytest.approx(0.8)


def test_bounds_of_polygon():
    assert tract_bounds(SQUARE) == Bounds(north=2.0, south=0.0, east=2.0, west=0.0)


def test_multipolygon_uses_every_ring():
    mp = MultiPolygon([box(0, 0, 1, 1), box(10, 10, 11, 11)])
    coords = extract_coordinates(mp)
    assert coords.shape == (10, 2)
    b = tract_bounds(mp)
    assert (b.north, b.south, b.east, b.west) == (11.0, 0.0, 11.0, 0.0)


def test_geojson_mapping_accepted():
    geom = {"type": "Polygon", "coordinates": [[[0, 0], [2, 0], [2, 2], [0, 2], [0, 0]]]}
    assert tract_centroid(geom) == tract_centroid(SQUARE)


def test_empty_geometry_defaults():
    assert tract_centroid(None) == (0.0, 0.0)
    assert tract_bounds(None) == Bounds.empty()
    assert extract_coordinates(Polygon()).shape == (0, 2)
    assert tract_centroid({"type": "Polygon", "coordinates": []}) == (0.0, 0.0)


def test_unsupported_geometry_type():
    with pytest.raises(TypeError):
        tract_centroid("POLYGON")


def test_centroid_and_bounds_are_pure():
    g = Polygon([(-87.61, 41.88), (-87.60, 41.88), (-87.60, 41.89), (-87.61, 41.89), (-87.61, 41.88)])
    assert tract_centroid(g) == tract_centroid(g)
    assert tract_bounds(g) == tract_bounds(g)
    assert tract_centroid(Polygon(g.exterior.coords)) == tract_centroid(g)


def test_group_helpers():
    cents = np.array([[1.0, 2.0], [3.0, 4.0]])
    assert group_centroid(cents) == (2.0, 3.0)
    assert group_centroid(np.zeros((0, 2))) == (0.0, 0.0)

    b = group_bounds([Bounds(2, 1, 5, 4), Bounds(3, 0, 4, 3)])
    assert b == Bounds(north=3.0, south=0.0, east=5.0, west=3.0)
    assert group_bounds(np.zeros((0, 4))) == Bounds.empty()
