from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from geodistrict.algos.geometry import group_bounds, group_centroid
from geodistrict.algos.model import (
    LATITUDE,
    LONGITUDE,
    NO_AXIS,
    Axis,
    BisectionTree,
    DistrictGroup,
    DivisionInputError,
    DivisionStep,
    Split,
    Terminal,
)
from geodistrict.algos.ordering import GREEDY_TRAVERSAL, order_tracts
from geodistrict.data.tracts import TractSet


# -----------------------------
# Split arithmetic
# -----------------------------

def split_counts(n: int) -> tuple[tuple[int, int], tuple[float, float]]:
    """District counts and population ratio targets for the two children.

    The smaller half (floor) always comes first: 13 -> (6, 7), (6/13, 7/13).
    """
    if n < 2:
        raise ValueError(f"cannot split a group targeting {n} district(s)")
    first = n // 2
    second = n - first
    return (first, second), (first / n, second / n)


def axis_for_depth(depth: int) -> Axis:
    return LATITUDE if depth % 2 == 0 else LONGITUDE


def cut_index(populations: Sequence[int] | np.ndarray, ratio: float, first_count: int, second_count: int) -> int:
    """
    Number of leading tracts (in traversal order) that go to the first child.

    Greedy ratio matching on the cumulative population: the earliest position
    where the running share reaches the target, or the one before it when that
    lands at least as close. Zero-population groups cut by tract count. The
    result always leaves >= first_count tracts before and >= second_count after.
    """
    pops = np.asarray(populations, dtype=float)
    m = int(pops.shape[0])
    if m < first_count + second_count:
        raise DivisionInputError(
            f"group of {m} tracts cannot hold {first_count + second_count} districts"
        )

    total = float(pops.sum())
    if total <= 0:
        cut = int(math.floor(m * ratio + 0.5))
    else:
        target = total * ratio
        cum = np.cumsum(pops)
        k = int(np.searchsorted(cum, target, side="left"))
        k = min(k, m - 1)
        cut = k + 1
        if k > 0 and (target - cum[k - 1]) <= (cum[k] - target):
            cut = k

    return max(first_count, min(cut, m - second_count))


def connected_prefixes(order: Sequence[int], adjacency) -> np.ndarray:
    """ok[k] is True when order[:k] induces a connected subgraph (k = 0..len(order))."""
    parent: dict[int, int] = {}

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    ok = np.zeros(len(order) + 1, dtype=bool)
    ok[0] = True
    n_comp = 0
    for k, i in enumerate(order, start=1):
        i = int(i)
        parent[i] = i
        n_comp += 1
        for j in adjacency.neighbors(i):
            if j not in parent:
                continue
            ri, rj = find(i), find(j)
            if ri != rj:
                parent[ri] = rj
                n_comp -= 1
        ok[k] = n_comp == 1
    return ok


def contiguous_cut(order: Sequence[int], cut: int, lo: int, hi: int, adjacency) -> int:
    """
    Nearest cut in [lo, hi] that leaves both order[:cut] and order[cut:]
    contiguous, searching outward from `cut` (earlier side first on ties).
    Returns `cut` unchanged when it already works or when no cut does.
    """
    if adjacency is None:
        return cut
    m = len(order)
    head = connected_prefixes(order, adjacency)
    tail = connected_prefixes(list(reversed(order)), adjacency)

    def works(k: int) -> bool:
        return bool(head[k] and tail[m - k])

    if works(cut):
        return cut
    for step in range(1, max(cut - lo, hi - cut) + 1):
        for k in (cut - step, cut + step):
            if lo <= k <= hi and works(k):
                return k
    return cut


# -----------------------------
# Groups
# -----------------------------

def make_group(
    tree: BisectionTree,
    ts: TractSet,
    tracts: Sequence[int],
    target: int,
    *,
    direction: Axis,
    start: int,
    depth: int,
) -> DistrictGroup:
    idx = np.asarray(tracts, dtype=int)
    g = DistrictGroup(
        group_id=len(tree.groups),
        tracts=tuple(int(i) for i in idx),
        population=int(ts.population[idx].sum()) if len(idx) else 0,
        target_district_count=int(target),
        centroid=group_centroid(ts.centroids[idx]),
        bounds=group_bounds(ts.bounds[idx]),
        direction=direction,
        start_district_number=int(start),
        end_district_number=int(start + target - 1),
        depth=depth,
    )
    return tree.add(g)


def split_group(
    tree: BisectionTree,
    ts: TractSet,
    group: DistrictGroup,
    adjacency=None,
    *,
    strategy: str = GREEDY_TRAVERSAL,
    tie_tolerance: float = 0.001,
    band_width: float = 0.1,
) -> Split:
    """
    Order the group on its depth's axis and cut it into two children.

    The population cut moves to the nearest position where both children stay
    contiguous, if there is one.
    """
    n = group.target_district_count
    if len(group.tracts) < n:
        raise DivisionInputError(
            f"group {group.group_id} has {len(group.tracts)} tracts but needs {n} districts"
        )

    (first, second), ratio = split_counts(n)
    axis = axis_for_depth(group.depth)
    ordering = order_tracts(
        ts, group.tracts, axis, adjacency, strategy,
        tie_tolerance=tie_tolerance, band_width=band_width,
    )
    order = ordering.order
    greedy = cut_index(ts.population[np.asarray(order, dtype=int)], ratio[0], first, second)
    cut = contiguous_cut(order, greedy, first, len(order) - second, adjacency)

    a = make_group(
        tree, ts, order[:cut], first,
        direction=axis, start=group.start_district_number, depth=group.depth + 1,
    )
    b = make_group(
        tree, ts, order[cut:], second,
        direction=axis, start=group.start_district_number + first, depth=group.depth + 1,
    )
    node = Split(
        group=group, axis=axis, children=(a.group_id, b.group_id), ratio=ratio,
        jumps=ordering.jumps, cut_shift=cut - greedy,
    )
    tree.nodes[group.group_id] = node
    return node


# -----------------------------
# Level-by-level worklist
# -----------------------------

@dataclass
class BisectionOutcome:
    tree: BisectionTree
    steps: list[DivisionStep]
    history: list[str] = field(default_factory=list)
    jumps: int = 0

    def terminals(self) -> list[DistrictGroup]:
        return self.tree.terminals()


def bisect(
    ts: TractSet,
    tracts: Sequence[int],
    target: int,
    adjacency=None,
    *,
    strategy: str = GREEDY_TRAVERSAL,
    start_district: int = 1,
    tie_tolerance: float = 0.001,
    band_width: float = 0.1,
    label: str = "",
    verbose: bool = False,
) -> BisectionOutcome:
    """
    Split tracts into `target` groups by alternating latitude / longitude cuts.

    Groups at one level never depend on their siblings, so the worklist is
    processed level by level and each level is recorded as a DivisionStep
    (step 0 is the initial single group).
    """
    if target < 1:
        raise DivisionInputError(f"target districts must be >= 1 (got {target})")
    if len(tracts) < target:
        raise DivisionInputError(f"{target} districts requested from only {len(tracts)} tracts")

    prefix = f"{label}: " if label else ""
    tree = BisectionTree()
    root = make_group(tree, ts, sorted(int(i) for i in tracts), target, direction=NO_AXIS, start=start_district, depth=0)

    steps = [
        DivisionStep(
            step=0,
            level=0,
            groups=(root,),
            description=f"{prefix}Initial group: {len(root.tracts)} tracts, {target} district(s)",
        )
    ]
    history: list[str] = []
    jumps = 0

    frontier = [root]
    level = 0
    while any(not g.is_terminal for g in frontier):
        axis = axis_for_depth(level)
        nxt: list[DistrictGroup] = []
        n_split = 0
        for g in frontier:
            if g.is_terminal:
                nxt.append(g)
                continue
            node = split_group(
                tree, ts, g, adjacency,
                strategy=strategy, tie_tolerance=tie_tolerance, band_width=band_width,
            )
            a, b = tree.children_of(g.group_id)
            nxt.extend([a, b])
            n_split += 1
            jumps += node.jumps
            msg = (
                f"{prefix}split group {g.group_id} ({g.target_district_count} districts, pop {g.population}) "
                f"by {axis}: {a.target_district_count}/{b.target_district_count} "
                f"at ratio {node.ratio[0]:.3f}/{node.ratio[1]:.3f} -> pops {a.population}/{b.population}"
            )
            if node.cut_shift:
                msg += f" (cut moved {node.cut_shift:+d} tract(s) to keep both halves contiguous)"
            history.append(msg)
            if verbose:
                print(f"[Bisect] {msg}")

        level += 1
        frontier = nxt
        steps.append(
            DivisionStep(
                step=len(steps),
                level=level,
                groups=tuple(frontier),
                description=f"{prefix}Level {level}: {n_split} group(s) split by {axis}, {len(frontier)} groups",
                axis=axis,
            )
        )

    for g in frontier:
        tree.nodes[g.group_id] = Terminal(g)

    return BisectionOutcome(tree=tree, steps=steps, history=history, jumps=jumps)
