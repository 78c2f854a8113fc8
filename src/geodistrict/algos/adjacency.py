from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping, Optional

import geopandas as gpd
import numpy as np

from geodistrict.data.tracts import TractSet

AdjacencyTable = Mapping[str, Iterable[str]]


# ----------------------------
# Per-run memo
# ----------------------------

class AdjacencyCache:
    """Pair results and neighbor lists for one invocation. Never shared across runs."""

    def __init__(self) -> None:
        self.pairs: dict[tuple[int, int], bool] = {}
        self.neighbors: dict[int, list[int]] = {}
        self.geometric_checks = 0

    def get_pair(self, i: int, j: int) -> Optional[bool]:
        return self.pairs.get((i, j) if i < j else (j, i))

    def set_pair(self, i: int, j: int, value: bool) -> None:
        self.pairs[(i, j) if i < j else (j, i)] = value

    def clear(self) -> None:
        self.pairs.clear()
        self.neighbors.clear()
        self.geometric_checks = 0


def _geoms_touch(a, b, eps: float) -> bool:
    if a is None or b is None:
        return False
    try:
        if a.is_empty or b.is_empty:
            return False
        d = a.distance(b)
        return bool(np.isfinite(d) and d <= eps)
    except Exception:
        # degenerate rings etc. count as "no adjacency"
        return False


# ----------------------------
# Geometric model
# ----------------------------

class GeometricAdjacency:
    """
    Tracts are adjacent when their boundaries come within eps degrees of each
    other (a shared segment or a shared vertex). Candidates come from the
    geopandas spatial index over bounding boxes grown by eps; neighbor lists
    are computed on first use.
    """

    def __init__(self, tract_set: TractSet, eps: float = 1e-6, cache: Optional[AdjacencyCache] = None):
        self.tract_set = tract_set
        self.eps = float(eps)
        self.cache = cache if cache is not None else AdjacencyCache()
        self._geoms = gpd.GeoSeries(tract_set.geometries, index=range(len(tract_set)))
        self._sindex = None

    @property
    def sindex(self):
        if self._sindex is None:
            self._sindex = self._geoms.sindex
        return self._sindex

    def candidates(self, i: int) -> list[int]:
        g = self._geoms.iloc[i]
        if g is None or g.is_empty:
            return []
        minx, miny, maxx, maxy = g.bounds
        e = self.eps
        hits = self.sindex.intersection((minx - e, miny - e, maxx + e, maxy + e))
        return sorted(int(j) for j in hits if int(j) != i)

    def _geometric_pair(self, i: int, j: int) -> bool:
        cached = self.cache.get_pair(i, j)
        if cached is not None:
            return cached
        self.cache.geometric_checks += 1
        ok = _geoms_touch(self._geoms.iloc[i], self._geoms.iloc[j], self.eps)
        self.cache.set_pair(i, j, ok)
        return ok

    def are_adjacent(self, i: int, j: int) -> bool:
        if i == j:
            return False
        return self._geometric_pair(i, j)

    def neighbors(self, i: int) -> list[int]:
        nbrs = self.cache.neighbors.get(i)
        if nbrs is None:
            nbrs = [j for j in self.candidates(i) if self._geometric_pair(i, j)]
            self.cache.neighbors[i] = nbrs
        return nbrs

    # id-based views
    def neighbor_ids(self, geoid: str) -> list[str]:
        ids = self.tract_set.ids
        return [ids[j] for j in self.neighbors(self.tract_set.id_to_idx[geoid])]

    def are_adjacent_ids(self, a: str, b: str) -> bool:
        idx = self.tract_set.id_to_idx
        return self.are_adjacent(idx[a], idx[b])


# ----------------------------
# Precomputed table (with geometric fallback)
# ----------------------------

class PrecomputedAdjacency(GeometricAdjacency):
    """
    Neighbor lookup from an external table keyed by tract id. Pairs that
    involve an id the table does not know are checked geometrically.
    """

    def __init__(
        self,
        tract_set: TractSet,
        table: AdjacencyTable,
        eps: float = 1e-6,
        cache: Optional[AdjacencyCache] = None,
    ):
        super().__init__(tract_set, eps=eps, cache=cache)

        id_to_idx = tract_set.id_to_idx
        known = np.zeros(len(tract_set), dtype=bool)
        table_nbrs: list[set[int]] = [set() for _ in range(len(tract_set))]
        for u, nbrs in table.items():
            i = id_to_idx.get(str(u))
            if i is None:
                continue
            known[i] = True
            for v in nbrs:
                j = id_to_idx.get(str(v))
                if j is None or j == i:
                    continue
                table_nbrs[i].add(j)
                table_nbrs[j].add(i)
        # ids listed only as someone's neighbor still count as covered
        for i in range(len(tract_set)):
            if table_nbrs[i]:
                known[i] = True

        self._known = known
        self._table_nbrs = table_nbrs
        self.missing_ids = [tract_set.ids[i] for i in np.where(~known)[0]]

    def in_table(self, i: int) -> bool:
        return bool(self._known[i])

    def are_adjacent(self, i: int, j: int) -> bool:
        if i == j:
            return False
        if self._known[i] and self._known[j]:
            return j in self._table_nbrs[i]
        return self._geometric_pair(i, j)

    def neighbors(self, i: int) -> list[int]:
        nbrs = self.cache.neighbors.get(i)
        if nbrs is not None:
            return nbrs

        if self._known[i]:
            out = set(self._table_nbrs[i])
            # only pairs with an unknown partner go through geometry
            for j in self.candidates(i):
                if not self._known[j] and self._geometric_pair(i, j):
                    out.add(j)
        else:
            out = {j for j in self.candidates(i) if self.are_adjacent(i, j)}

        nbrs = sorted(out)
        self.cache.neighbors[i] = nbrs
        return nbrs


# ----------------------------
# Contiguity (flood fill restricted to a subset)
# ----------------------------

def components(indices: Iterable[int], adjacency) -> list[list[int]]:
    """Connected components of the subgraph induced by indices. Largest-first."""
    nodes = sorted(set(int(i) for i in indices))
    node_set = set(nodes)
    seen: set[int] = set()
    comps: list[list[int]] = []

    for start in nodes:
        if start in seen:
            continue
        q = deque([start])
        seen.add(start)
        comp: list[int] = []
        while q:
            x = q.popleft()
            comp.append(x)
            for y in adjacency.neighbors(x):
                if y in node_set and y not in seen:
                    seen.add(y)
                    q.append(y)
        comps.append(comp)

    comps.sort(key=len, reverse=True)
    return comps


def is_contiguous(indices: Iterable[int], adjacency) -> bool:
    nodes = list(indices)
    if len(nodes) <= 1:
        return True
    node_set = set(nodes)
    start = nodes[0]
    seen = {start}
    q = deque([start])
    while q:
        u = q.popleft()
        for v in adjacency.neighbors(u):
            if v in node_set and v not in seen:
                seen.add(v)
                q.append(v)
    return len(seen) == len(node_set)


def find_contained_tracts(tract_set: TractSet) -> list[tuple[str, str]]:
    """(contained_id, container_id) pairs: tracts lying wholly inside another tract."""
    geoms = gpd.GeoSeries(tract_set.geometries, index=range(len(tract_set)))
    sindex = geoms.sindex
    ids = tract_set.ids

    out: list[tuple[str, str]] = []
    for i, g in enumerate(geoms):
        if g is None or g.is_empty:
            continue
        try:
            hits = sindex.query(g, predicate="contains")
        except Exception:
            continue
        for j in sorted(int(h) for h in hits):
            if j != i:
                out.append((ids[j], ids[i]))
    return out
