from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from geodistrict.algos.bisect import bisect
from geodistrict.algos.geometry import Bounds, LatLng, group_bounds, group_centroid
from geodistrict.algos.model import DivisionStep
from geodistrict.algos.ordering import GREEDY_TRAVERSAL
from geodistrict.data.tracts import TractSet


@dataclass(frozen=True)
class CountyGroup:
    county_key: str
    name: str
    tracts: tuple[int, ...]
    population: int
    centroid: LatLng
    bounds: Bounds


def group_by_county(ts: TractSet) -> list[CountyGroup]:
    """County buckets, most populated first (ties by county key)."""
    df = pd.DataFrame(
        {
            "county": ts.county_keys,
            "idx": np.arange(len(ts)),
            "pop": ts.population,
        }
    )

    out: list[CountyGroup] = []
    for key, sub in df.groupby("county", sort=True):
        idx = sub["idx"].to_numpy(dtype=int)
        first = ts.tracts[int(idx[0])]
        name = str(first.extra.get("COUNTY_NAME", "") or "")
        out.append(
            CountyGroup(
                county_key=str(key),
                name=name,
                tracts=tuple(int(i) for i in idx),
                population=int(sub["pop"].sum()),
                centroid=group_centroid(ts.centroids[idx]),
                bounds=group_bounds(ts.bounds[idx]),
            )
        )

    out.sort(key=lambda c: (-c.population, c.county_key))
    return out


@dataclass
class CountyAssignment:
    labels: np.ndarray  # (N,) district ids 1..target
    steps: list[DivisionStep] = field(default_factory=list)
    history: list[str] = field(default_factory=list)
    split_counties: list[str] = field(default_factory=list)
    jumps: int = 0


def _least_populated(pop: np.ndarray) -> int:
    # pop is indexed 1..target; argmin picks the lowest id on ties
    return int(np.argmin(pop[1:])) + 1


def assign_counties(
    ts: TractSet,
    counties: list[CountyGroup],
    target: int,
    adjacency=None,
    *,
    strategy: str = GREEDY_TRAVERSAL,
    tie_tolerance: float = 0.001,
    band_width: float = 0.1,
    verbose: bool = False,
) -> CountyAssignment:
    """
    Counties at or above the ideal population take whole districts (bisected
    internally when worth several); smaller counties join the currently
    least-populated district. Districts still empty afterwards are filled by
    geographically halving the most populated multi-tract district.
    """
    n = len(ts)
    labels = np.zeros(n, dtype=int)
    pop = np.zeros(target + 1, dtype=np.int64)
    used = np.zeros(target + 1, dtype=bool)
    used[0] = True

    total = int(ts.population.sum())
    ideal = total / target if target else 0.0

    out = CountyAssignment(labels=labels)

    def log(msg: str) -> None:
        out.history.append(msg)
        if verbose:
            print(f"[Counties] {msg}")

    def place(tracts, d: int) -> None:
        idx = np.asarray(tracts, dtype=int)
        labels[idx] = d
        pop[d] += int(ts.population[idx].sum())
        used[d] = True

    bisect_kw = dict(strategy=strategy, tie_tolerance=tie_tolerance, band_width=band_width, verbose=verbose)

    for county in counties:
        empties = [d for d in range(1, target + 1) if not used[d]]

        if ideal <= 0:
            k = 1
        elif county.population >= ideal:
            k = max(1, int(math.floor(county.population / ideal + 0.5)))
        else:
            k = 0
        k = min(k, len(empties), len(county.tracts))

        if k == 0:
            d = _least_populated(pop)
            place(county.tracts, d)
            continue

        if k == 1:
            place(county.tracts, empties[0])
            log(f"county {county.county_key} (pop {county.population}) -> district {empties[0]}")
            continue

        sub = bisect(
            ts, county.tracts, k, adjacency,
            start_district=1, label=f"county {county.county_key}", **bisect_kw,
        )
        for g in sub.terminals():
            place(g.tracts, empties[g.start_district_number - 1])
        out.steps.extend(sub.steps[1:])
        out.history.extend(sub.history)
        out.jumps += sub.jumps
        out.split_counties.append(county.county_key)
        log(
            f"county {county.county_key} (pop {county.population}) subdivided into {k} districts "
            f"-> {empties[:k]}"
        )

    # Too few large counties: carve the leftovers geographically.
    while True:
        empties = [d for d in range(1, target + 1) if not used[d]]
        if not empties:
            break
        sizes = np.bincount(labels, minlength=target + 1)
        movable = [d for d in range(1, target + 1) if sizes[d] > 1]
        if not movable:
            break
        src = max(movable, key=lambda d: (pop[d], sizes[d], -d))
        dst = empties[0]
        members = np.where(labels == src)[0]

        sub = bisect(ts, members, 2, adjacency, start_district=1, label=f"district {src}", **bisect_kw)
        _, give = sub.terminals()
        pop[src] -= int(ts.population[list(give.tracts)].sum())
        place(give.tracts, dst)
        out.steps.extend(sub.steps[1:])
        out.jumps += sub.jumps
        log(f"district {src} halved by {sub.steps[-1].axis} to fill empty district {dst}")

    return out
