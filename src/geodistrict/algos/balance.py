from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

import numpy as np

from geodistrict.algos.adjacency import is_contiguous
from geodistrict.data.tracts import TractSet


@dataclass
class BalanceReport:
    labels: np.ndarray
    iterations: int = 0
    converged: bool = True
    moves: list[str] = field(default_factory=list)


def district_populations(labels: np.ndarray, weight: np.ndarray, num_districts: int) -> np.ndarray:
    """Index 0 is unused; districts are 1..num_districts."""
    return np.bincount(labels, weights=weight, minlength=num_districts + 1).astype(np.int64)


def within_tolerance(pop: np.ndarray, ideal: float, tolerance: float) -> bool:
    if ideal <= 0:
        return True
    return bool(np.all(np.abs(pop[1:] - ideal) / ideal <= tolerance))


# ----------------------------
# Candidate units
# ----------------------------

def _tract_units(labels: np.ndarray, src: int, adjacency) -> list[tuple[list[int], set[int]]]:
    """Boundary tracts of src with the districts they touch."""
    out = []
    for i in np.where(labels == src)[0]:
        i = int(i)
        dsts = {int(labels[j]) for j in adjacency.neighbors(i) if int(labels[j]) != src}
        if dsts:
            out.append(([i], dsts))
    return out


def _county_units(labels: np.ndarray, src: int, ts: TractSet, adjacency) -> list[tuple[list[int], set[int]]]:
    """
    Whole county portions of src, plus single boundary tracts of counties
    that are already split between src and the receiving district.
    """
    keys = ts.county_keys
    presence: dict[str, set[int]] = defaultdict(set)
    for i, d in enumerate(labels):
        presence[keys[i]].add(int(d))

    portions: dict[str, list[int]] = defaultdict(list)
    for i in np.where(labels == src)[0]:
        portions[keys[int(i)]].append(int(i))

    out = []
    for county in sorted(portions):
        tracts = portions[county]
        dsts: set[int] = set()
        for i in tracts:
            for j in adjacency.neighbors(i):
                dj = int(labels[j])
                if dj != src:
                    dsts.add(dj)
        if dsts:
            out.append((tracts, dsts))

        shared = presence[county] - {src}
        if not shared or len(tracts) == 1:
            continue
        for i in tracts:
            touch = {int(labels[j]) for j in adjacency.neighbors(i) if int(labels[j]) in shared}
            if touch:
                out.append(([i], touch))
    return out


# ----------------------------
# Hill climb
# ----------------------------

def balance(
    labels: np.ndarray,
    ts: TractSet,
    adjacency,
    ideal: float,
    *,
    num_districts: int,
    tolerance: float = 0.01,
    max_iterations: int = 100,
    county_mode: bool = True,
    verbose: bool = False,
) -> BalanceReport:
    """
    Local hill climb: move units out of the most over-populated district into
    adjacent, less populated ones while the combined deviation of the pair
    drops. Each applied move is one iteration.

    A move is rejected if it empties the source, or disconnects a source or
    destination that was contiguous before the move.
    """
    labels = np.asarray(labels, dtype=int).copy()
    weight = ts.population.astype(np.int64)
    pop = district_populations(labels, weight, num_districts)

    report = BalanceReport(labels=labels)

    def members(d: int) -> list[int]:
        return [int(i) for i in np.where(labels == d)[0]]

    while report.iterations < max_iterations and not within_tolerance(pop, ideal, tolerance):
        over = [d for d in range(1, num_districts + 1) if pop[d] > ideal]
        over.sort(key=lambda d: (-(pop[d] - ideal), d))

        applied = False
        for src in over:
            src_nodes = members(src)
            units = _county_units(labels, src, ts, adjacency) if county_mode else _tract_units(labels, src, adjacency)

            candidates = []
            for unit, dsts in units:
                if len(unit) >= len(src_nodes):
                    continue
                wu = int(weight[unit].sum())
                for dst in dsts:
                    if pop[dst] >= pop[src]:
                        continue
                    before = abs(pop[src] - ideal) + abs(pop[dst] - ideal)
                    after = abs(pop[src] - wu - ideal) + abs(pop[dst] + wu - ideal)
                    gain = before - after
                    if gain > 0:
                        candidates.append((gain, dst, unit))
            candidates.sort(key=lambda t: (-t[0], t[1], t[2][0], len(t[2])))

            src_was = is_contiguous(src_nodes, adjacency)
            for gain, dst, unit in candidates:
                unit_set = set(unit)
                dst_nodes = members(dst)

                if src_was and not is_contiguous([i for i in src_nodes if i not in unit_set], adjacency):
                    continue
                if is_contiguous(dst_nodes, adjacency) and not is_contiguous(dst_nodes + unit, adjacency):
                    continue

                wu = int(weight[unit].sum())
                labels[unit] = dst
                pop[src] -= wu
                pop[dst] += wu
                report.iterations += 1
                msg = f"moved {len(unit)} tract(s) (pop {wu}) {src} -> {dst}, gain {gain:.0f}"
                report.moves.append(msg)
                if verbose:
                    print(f"[Balance] iter={report.iterations} {msg}")
                applied = True
                break

            if applied:
                break

        if not applied:
            break

    report.converged = within_tolerance(pop, ideal, tolerance)
    return report
