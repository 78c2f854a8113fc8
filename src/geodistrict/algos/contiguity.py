from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

import numpy as np

from geodistrict.algos.adjacency import components
from geodistrict.algos.balance import district_populations
from geodistrict.data.tracts import TractSet


# ----------------------------
# Components
# ----------------------------

def district_components(labels: np.ndarray, adjacency, d: int) -> list[list[int]]:
    """Connected components of district d. Largest-first."""
    return components(np.where(labels == d)[0], adjacency)


def boundary_neighbor_districts(comp: list[int], labels: np.ndarray, adjacency) -> dict[int, int]:
    """Counts boundary edges from comp into each neighboring district."""
    counts: dict[int, int] = defaultdict(int)
    inside = set(comp)
    for x in comp:
        for y in adjacency.neighbors(x):
            if y in inside:
                continue
            counts[int(labels[y])] += 1
    return dict(counts)


# ----------------------------
# Fragment reassignment
# ----------------------------

@dataclass
class RepairReport:
    labels: np.ndarray
    moved: int = 0
    moves: list[str] = field(default_factory=list)


def repair_contiguity(
    labels: np.ndarray,
    ts: TractSet,
    adjacency,
    *,
    num_districts: int,
    verbose: bool = False,
) -> RepairReport:
    """
    Keep the largest component of every district and hand each smaller
    fragment to the neighboring district it shares the most boundary edges
    with (least populated on ties).

    Every reassignment lowers the total number of district components, so the
    loop ends. On a connected tract graph it ends with every district
    contiguous; fragments with no neighboring district are left in place.
    """
    labels = np.asarray(labels, dtype=int).copy()
    weight = ts.population.astype(np.int64)
    pop = district_populations(labels, weight, num_districts)
    report = RepairReport(labels=labels)

    changed = True
    while changed:
        changed = False
        for d in range(1, num_districts + 1):
            comps = district_components(labels, adjacency, d)
            if len(comps) <= 1:
                continue

            # smallest first
            islands = sorted(comps[1:], key=lambda c: (int(weight[c].sum()), len(c), min(c)))
            for comp in islands:
                counts = boundary_neighbor_districts(comp, labels, adjacency)
                counts.pop(d, None)
                if not counts:
                    continue

                dst = min(counts, key=lambda e: (-counts[e], pop[e], e))
                wc = int(weight[comp].sum())
                labels[comp] = dst
                pop[d] -= wc
                pop[dst] += wc
                report.moved += 1
                msg = f"reassigned fragment of {len(comp)} tract(s) (pop {wc}) {d} -> {dst}"
                report.moves.append(msg)
                if verbose:
                    print(f"[Contiguity] {msg}")
                changed = True

    return report
