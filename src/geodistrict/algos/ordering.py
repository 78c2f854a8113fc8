from __future__ import annotations

import math
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Iterable, Optional

import numpy as np

from geodistrict.algos.model import LONGITUDE, Axis
from geodistrict.data.tracts import TractSet

GEOGRAPHIC = "geographic"
LATLONG = "latlong"
GREEDY_TRAVERSAL = "greedy-traversal"
PRECOMPUTED_ADJACENCY = "precomputed-adjacency"
ZIGZAG = "zigzag"

STRATEGIES = (GEOGRAPHIC, LATLONG, GREEDY_TRAVERSAL, PRECOMPUTED_ADJACENCY, ZIGZAG)
GRAPH_STRATEGIES = (GREEDY_TRAVERSAL, PRECOMPUTED_ADJACENCY)

_EPS = 1e-9


@dataclass
class TractOrdering:
    order: list[int]
    jumps: int = 0  # times the walk had to leave the adjacency graph


# -----------------------------
# Coordinate sorts (no adjacency)
# -----------------------------

def _geographic_order(ts: TractSet, indices: list[int], axis: Axis, tie_tolerance: float) -> list[int]:
    lat = ts.centroids[:, 0]
    lng = ts.centroids[:, 1]

    if axis == LONGITUDE:
        # west -> east, near-equal longitudes north -> south
        def cmp(a: int, b: int) -> int:
            if abs(lng[a] - lng[b]) > tie_tolerance:
                return -1 if lng[a] < lng[b] else 1
            if lat[a] != lat[b]:
                return -1 if lat[a] > lat[b] else 1
            return a - b
    else:
        # north -> south, near-equal latitudes west -> east
        def cmp(a: int, b: int) -> int:
            if abs(lat[a] - lat[b]) > tie_tolerance:
                return -1 if lat[a] > lat[b] else 1
            if lng[a] != lng[b]:
                return -1 if lng[a] < lng[b] else 1
            return a - b

    return sorted(indices, key=cmp_to_key(cmp))


def _latlong_order(ts: TractSet, indices: list[int], axis: Axis) -> list[int]:
    lat = ts.centroids[:, 0]
    lng = ts.centroids[:, 1]
    if axis == LONGITUDE:
        return sorted(indices, key=lambda i: (lng[i], -lat[i], i))
    return sorted(indices, key=lambda i: (-lat[i], lng[i], i))


# -----------------------------
# Greedy graph walk
# -----------------------------

def _axis_frame(ts: TractSet, axis: Axis) -> tuple[np.ndarray, np.ndarray]:
    """
    (primary, cross) coordinates such that the walk always progresses toward
    larger primary values and starts heading toward larger cross values.
    latitude: primary = southward, cross = eastward.
    longitude: primary = eastward, cross = southward.
    """
    lat = ts.centroids[:, 0]
    lng = ts.centroids[:, 1]
    if axis == LONGITUDE:
        return lng, -lat
    return -lat, lng


class _NearestVisited:
    """Running min distance from every member to the visited set (for jumps)."""

    def __init__(self, ts: TractSet, members: list[int]):
        self.members = np.asarray(members, dtype=int)
        self.pos = {t: k for k, t in enumerate(members)}
        self.xy = ts.centroids[self.members]
        self.mind = np.full(len(members), np.inf)
        self.open = np.ones(len(members), dtype=bool)

    def visit(self, t: int) -> None:
        k = self.pos[t]
        self.open[k] = False
        d = np.hypot(self.xy[:, 0] - self.xy[k, 0], self.xy[:, 1] - self.xy[k, 1])
        np.minimum(self.mind, d, out=self.mind)

    def nearest_open(self) -> int:
        masked = np.where(self.open, self.mind, np.inf)
        return int(self.members[int(np.argmin(masked))])


def _greedy_walk(ts: TractSet, indices: list[int], axis: Axis, adjacency) -> TractOrdering:
    members = sorted(indices)
    if len(members) <= 1:
        return TractOrdering(members, 0)

    member_set = set(members)
    p, c = _axis_frame(ts, axis)
    start = min(members, key=lambda i: (p[i], c[i], i))

    visited: set[int] = set()
    tracker = _NearestVisited(ts, members)
    order: list[int] = []
    heading = 1.0
    jumps = 0

    cur = start
    while True:
        visited.add(cur)
        order.append(cur)
        tracker.visit(cur)
        if len(order) == len(members):
            break

        nbrs = [j for j in adjacency.neighbors(cur) if j in member_set and j not in visited]
        if not nbrs:
            cur = tracker.nearest_open()
            jumps += 1
            continue

        # 1) keep going along the current row (mostly cross-axis moves only)
        along = [
            j for j in nbrs
            if (c[j] - c[cur]) * heading > _EPS and abs(p[j] - p[cur]) < abs(c[j] - c[cur]) - _EPS
        ]
        if along:
            cur = min(along, key=lambda j: (abs(p[j] - p[cur]), abs(c[j] - c[cur]), p[j], j))
            continue

        # 2) row exhausted: step forward on the primary axis, entering the next
        #    row at its far end in the current heading, and turn around
        forward = [j for j in nbrs if p[j] - p[cur] > _EPS]
        if forward:
            cur = min(forward, key=lambda j: (-(c[j] - c[cur]) * heading, p[j] - p[cur], j))
            heading = -heading
            continue

        # 3) anything adjacent, nearest first
        cur = min(nbrs, key=lambda j: (math.hypot(p[j] - p[cur], c[j] - c[cur]), j))

    return TractOrdering(order, jumps)


# -----------------------------
# Zig-zag bands
# -----------------------------

def _zigzag_order(ts: TractSet, indices: list[int], axis: Axis, adjacency, band_width: float) -> TractOrdering:
    lat = ts.centroids[:, 0]
    lng = ts.centroids[:, 1]
    bw = band_width if band_width > 0 else 0.1

    bands: dict[int, list[int]] = {}
    if axis == LONGITUDE:
        for i in indices:
            bands.setdefault(math.floor(lng[i] / bw), []).append(i)
        keys = sorted(bands)  # west -> east
        within = lambda i: (-lat[i], lng[i], i)  # north -> south
    else:
        for i in indices:
            bands.setdefault(math.floor(lat[i] / bw), []).append(i)
        keys = sorted(bands, reverse=True)  # north -> south
        within = lambda i: (lng[i], -lat[i], i)  # west -> east

    order: list[int] = []
    prev: Optional[int] = None
    for b, key in enumerate(keys):
        band = sorted(bands[key], key=within)
        if b % 2 == 1:
            band.reverse()
        if adjacency is not None:
            band = _repair_band(band, prev, adjacency)
        order.extend(band)
        if order:
            prev = order[-1]

    jumps = 0
    if adjacency is not None:
        jumps = sum(1 for a, b in zip(order, order[1:]) if not adjacency.are_adjacent(a, b))
    return TractOrdering(order, jumps)


def _repair_band(band: list[int], prev: Optional[int], adjacency) -> list[int]:
    """Pull forward the next band tract that touches the previously placed one."""
    remaining = list(band)
    out: list[int] = []
    while remaining:
        pick = 0
        if prev is not None and not adjacency.are_adjacent(prev, remaining[0]):
            for k in range(1, len(remaining)):
                if adjacency.are_adjacent(prev, remaining[k]):
                    pick = k
                    break
        prev = remaining.pop(pick)
        out.append(prev)
    return out


# -----------------------------
# Public entry
# -----------------------------

def order_tracts(
    tract_set: TractSet,
    indices: Iterable[int],
    axis: Axis,
    adjacency=None,
    strategy: str = GREEDY_TRAVERSAL,
    *,
    tie_tolerance: float = 0.001,
    band_width: float = 0.1,
) -> TractOrdering:
    """
    Order tract indices into one traversal sequence for a prefix/suffix cut.

    geographic / latlong sort centroids only. greedy-traversal and
    precomputed-adjacency walk the adjacency graph (they need a model;
    without one they fall back to the geographic sort). zigzag sweeps
    latitude (or longitude) bands with alternating direction.
    """
    idx = [int(i) for i in indices]
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown traversal strategy '{strategy}'. Expected one of {STRATEGIES}")

    if strategy == GEOGRAPHIC:
        return TractOrdering(_geographic_order(tract_set, idx, axis, tie_tolerance), 0)
    if strategy == LATLONG:
        return TractOrdering(_latlong_order(tract_set, idx, axis), 0)
    if strategy == ZIGZAG:
        return _zigzag_order(tract_set, idx, axis, adjacency, band_width)

    if adjacency is None:
        return TractOrdering(_geographic_order(tract_set, idx, axis, tie_tolerance), 0)
    return _greedy_walk(tract_set, idx, axis, adjacency)
