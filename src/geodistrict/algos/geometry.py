from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Tuple

import numpy as np
import shapely
from shapely.geometry import shape
from shapely.geometry.base import BaseGeometry

LatLng = Tuple[float, float]


# ----------------------------
# Bounds
# ----------------------------

@dataclass(frozen=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.north, self.south, self.east, self.west)

    @staticmethod
    def empty() -> "Bounds":
        return Bounds(0.0, 0.0, 0.0, 0.0)


# ----------------------------
# Coordinate extraction
# ----------------------------

def as_geometry(geometry: Any) -> BaseGeometry | None:
    """Accept a shapely geometry or a GeoJSON-style mapping."""
    if geometry is None:
        return None
    if isinstance(geometry, BaseGeometry):
        return geometry
    if isinstance(geometry, dict):
        if not geometry.get("coordinates"):
            return None
        return shape(geometry)
    raise TypeError(f"Unsupported geometry type: {type(geometry).__name__}")


def extract_coordinates(geometry: Any) -> np.ndarray:
    """
    All (lon, lat) vertices of every ring of a Polygon / MultiPolygon.
    Closing vertices are kept, exactly as they appear in GeoJSON rings.
    """
    geom = as_geometry(geometry)
    if geom is None or geom.is_empty:
        return np.zeros((0, 2), dtype=float)
    return shapely.get_coordinates(geom).astype(float)


def tract_centroid(geometry: Any) -> LatLng:
    """Arithmetic mean of all vertices, returned as (lat, lng)."""
    coords = extract_coordinates(geometry)
    if coords.shape[0] == 0:
        return (0.0, 0.0)
    lng = float(coords[:, 0].sum() / coords.shape[0])
    lat = float(coords[:, 1].sum() / coords.shape[0])
    return (lat, lng)


def tract_bounds(geometry: Any) -> Bounds:
    coords = extract_coordinates(geometry)
    if coords.shape[0] == 0:
        return Bounds.empty()
    return Bounds(
        north=float(coords[:, 1].max()),
        south=float(coords[:, 1].min()),
        east=float(coords[:, 0].max()),
        west=float(coords[:, 0].min()),
    )


# ----------------------------
# Group helpers (over many tracts)
# ----------------------------

def group_centroid(centroids: np.ndarray) -> LatLng:
    """Mean of tract centroids; centroids is (k, 2) as [lat, lng]."""
    if len(centroids) == 0:
        return (0.0, 0.0)
    centroids = np.asarray(centroids, dtype=float)
    return (float(centroids[:, 0].mean()), float(centroids[:, 1].mean()))


def group_bounds(bounds: np.ndarray | Iterable[Bounds]) -> Bounds:
    """Union of tract bounds; bounds is (k, 4) as [north, south, east, west]."""
    arr = np.asarray(
        [b.as_tuple() if isinstance(b, Bounds) else b for b in bounds],
        dtype=float,
    )
    if arr.size == 0:
        return Bounds.empty()
    return Bounds(
        north=float(arr[:, 0].max()),
        south=float(arr[:, 1].min()),
        east=float(arr[:, 2].max()),
        west=float(arr[:, 3].min()),
    )
