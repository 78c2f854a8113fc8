from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np

from geodistrict.algos.adjacency import (
    AdjacencyCache,
    AdjacencyTable,
    GeometricAdjacency,
    PrecomputedAdjacency,
    is_contiguous,
)
from geodistrict.algos.balance import balance, district_populations
from geodistrict.algos.bisect import bisect
from geodistrict.algos.contiguity import repair_contiguity
from geodistrict.algos.counties import assign_counties, group_by_county
from geodistrict.algos.geometry import group_bounds, group_centroid
from geodistrict.algos.model import (
    NO_AXIS,
    District,
    DistrictGroup,
    DivisionInputError,
    DivisionResult,
    DivisionStep,
    population_stats,
)
from geodistrict.algos.ordering import (
    GRAPH_STRATEGIES,
    GREEDY_TRAVERSAL,
    PRECOMPUTED_ADJACENCY,
    STRATEGIES,
)
from geodistrict.data.tracts import Tract, TractSet, build_tract_set


# -----------------------------
# Config / Parameters
# -----------------------------

@dataclass
class DivisionParams:
    target_districts: int = 1
    max_iterations: int = 100
    population_tolerance: float = 0.01
    preserve_county_boundaries: bool = True
    traversal_strategy: str = GREEDY_TRAVERSAL  # see ordering.STRATEGIES

    # adjacency / ordering knobs
    adjacency_epsilon: float = 1e-6
    zigzag_band_width: float = 0.1
    geographic_tie_tolerance: float = 0.001

    verbose: bool = False


def params_from_cfg(cfg: dict) -> DivisionParams:
    p = DivisionParams()
    run_cfg = cfg.get("run", {}) or {}
    algo_cfg = (cfg.get("algo", {}) or {}).get("geodistrict", {}) or {}

    p.target_districts = int(algo_cfg.get("num_districts", run_cfg.get("num_districts", p.target_districts)))
    p.population_tolerance = float(algo_cfg.get("pop_tolerance", run_cfg.get("pop_tolerance", p.population_tolerance)))
    p.max_iterations = int(algo_cfg.get("max_iterations", run_cfg.get("max_iterations", p.max_iterations)))

    p.preserve_county_boundaries = bool(algo_cfg.get("preserve_county_boundaries", p.preserve_county_boundaries))
    p.traversal_strategy = str(algo_cfg.get("traversal_strategy", p.traversal_strategy))
    p.adjacency_epsilon = float(algo_cfg.get("adjacency_epsilon", p.adjacency_epsilon))
    p.zigzag_band_width = float(algo_cfg.get("zigzag_band_width", p.zigzag_band_width))
    p.geographic_tie_tolerance = float(algo_cfg.get("geographic_tie_tolerance", p.geographic_tie_tolerance))
    p.verbose = bool(algo_cfg.get("verbose", run_cfg.get("verbose", p.verbose)))
    return p


def validate_params(params: DivisionParams) -> None:
    if params.target_districts < 1:
        raise DivisionInputError(f"target_districts must be >= 1 (got {params.target_districts})")
    if not (0.0 <= params.population_tolerance < 1.0):
        raise DivisionInputError(
            f"population_tolerance must be in [0, 1) (got {params.population_tolerance})"
        )
    if params.max_iterations < 0:
        raise DivisionInputError(f"max_iterations must be >= 0 (got {params.max_iterations})")
    if params.traversal_strategy not in STRATEGIES:
        raise DivisionInputError(
            f"Unknown traversal_strategy '{params.traversal_strategy}'. Expected one of {STRATEGIES}"
        )


# -----------------------------
# Main entry
# -----------------------------

def divide_tracts(
    tracts: Union[TractSet, Sequence[Tract]],
    params: DivisionParams,
    adjacency_table: Optional[AdjacencyTable] = None,
) -> DivisionResult:
    """
    Partition tracts into params.target_districts contiguous, population
    balanced districts.

    Fragments left by the cuts are reassigned to a neighboring district before
    balancing, and the balancer never breaks a contiguous district.

    Raises DivisionInputError for inputs that cannot be partitioned. Missing
    adjacency data, ordering jumps, non-contiguous districts and balancer
    shortfall are reported through result.warnings instead.
    """
    validate_params(params)
    ts = tracts if isinstance(tracts, TractSet) else build_tract_set(tracts)
    if len(ts) == 0:
        raise DivisionInputError("Tract list is empty.")

    target = params.target_districts
    if target > len(ts):
        raise DivisionInputError(f"{target} districts requested but only {len(ts)} tracts available")

    history: list[str] = []
    warnings: list[str] = []

    def log(msg: str) -> None:
        history.append(msg)
        if params.verbose:
            print(f"[GeoDistrict] {msg}")

    log(f"{len(ts)} tracts, total population {ts.total_population}, target {target} districts")

    # ---- adjacency model (one cache per invocation) ----
    cache = AdjacencyCache()
    strategy = params.traversal_strategy
    if adjacency_table is not None:
        adjacency = PrecomputedAdjacency(ts, adjacency_table, eps=params.adjacency_epsilon, cache=cache)
        if adjacency.missing_ids:
            warnings.append(
                f"{len(adjacency.missing_ids)} tract(s) missing from the adjacency table; "
                f"using geometric adjacency for their pairs (e.g. {adjacency.missing_ids[:5]})"
            )
        log(f"adjacency: precomputed table ({len(adjacency.missing_ids)} ids need geometric fallback)")
    else:
        adjacency = GeometricAdjacency(ts, eps=params.adjacency_epsilon, cache=cache)
        if strategy == PRECOMPUTED_ADJACENCY:
            warnings.append("precomputed-adjacency requested without a table; using geometric adjacency")
        log(f"adjacency: geometric (eps={params.adjacency_epsilon})")

    ordering_kw = dict(
        strategy=strategy,
        tie_tolerance=params.geographic_tie_tolerance,
        band_width=params.zigzag_band_width,
        verbose=params.verbose,
    )

    # ---- initial assignment ----
    county_mode = bool(params.preserve_county_boundaries) and target > 1
    mode = "county" if county_mode else "geographic"
    jumps = 0

    if county_mode:
        counties = group_by_county(ts)
        log(f"county-aware mode: {len(counties)} counties")
        root = _snapshot_group(ts, list(range(len(ts))), target, group_id=0, start=1)
        steps = [DivisionStep(step=0, level=0, groups=(root,), description=f"Initial: {len(ts)} tracts, {target} districts")]

        assignment = assign_counties(ts, counties, target, adjacency, **ordering_kw)
        labels = assignment.labels
        history.extend(assignment.history)
        jumps += assignment.jumps
        for s in assignment.steps:
            steps.append(DivisionStep(step=len(steps), level=s.level, groups=s.groups, description=s.description, axis=s.axis))
        steps.append(
            DivisionStep(
                step=len(steps),
                level=1,
                groups=_district_snapshot(ts, labels, target),
                description=(
                    f"County assignment: {len(counties)} counties into {target} districts "
                    f"({len(assignment.split_counties)} subdivided)"
                ),
            )
        )
    else:
        outcome = bisect(ts, range(len(ts)), target, adjacency, start_district=1, **ordering_kw)
        history.extend(outcome.history)
        jumps += outcome.jumps
        steps = list(outcome.steps)
        labels = np.zeros(len(ts), dtype=int)
        for g in outcome.terminals():
            labels[list(g.tracts)] = g.start_district_number

    if jumps and strategy in GRAPH_STRATEGIES:
        warnings.append(f"traversal left the adjacency graph {jumps} time(s); nearest-centroid jumps were used")

    # ---- contiguity repair ----
    if target > 1:
        repair = repair_contiguity(labels, ts, adjacency, num_districts=target, verbose=params.verbose)
        labels = repair.labels
        history.extend(repair.moves)
        log(f"contiguity repair: {repair.moved} fragment(s) reassigned")
        if repair.moved:
            steps.append(
                DivisionStep(
                    step=len(steps),
                    level=steps[-1].level,
                    groups=_district_snapshot(ts, labels, target),
                    description=f"Contiguity repair: {repair.moved} fragment(s) reassigned",
                )
            )

    # ---- balance ----
    ideal = ts.total_population / target
    converged = True
    iterations = 0
    if target > 1:
        report = balance(
            labels, ts, adjacency, ideal,
            num_districts=target,
            tolerance=params.population_tolerance,
            max_iterations=params.max_iterations,
            county_mode=county_mode,
            verbose=params.verbose,
        )
        labels = report.labels
        converged = report.converged
        iterations = report.iterations
        history.extend(report.moves)
        log(f"balancer: {iterations} move(s), converged={converged}")
        if iterations:
            steps.append(
                DivisionStep(
                    step=len(steps),
                    level=steps[-1].level,
                    groups=_district_snapshot(ts, labels, target),
                    description=f"Balanced: {iterations} move(s)",
                )
            )
        if not converged:
            pops = district_populations(labels, ts.population, target)[1:]
            worst = float(np.max(np.abs(pops - ideal)) / ideal) if ideal > 0 else 0.0
            warnings.append(
                f"balancer stopped after {iterations} move(s) without reaching tolerance "
                f"{params.population_tolerance:.2%} (max deviation {worst:.2%})"
            )

    # ---- districts ----
    districts = _build_districts(ts, labels, target, adjacency)
    for d in districts:
        if not d.contiguous:
            warnings.append(f"district {d.id} is not contiguous")

    total, avg, variance, max_dev = population_stats(np.array([d.population for d in districts]))
    log(f"done: average {avg:.1f}, variance {variance:.1f}, max deviation {max_dev:.2%}")

    return DivisionResult(
        districts=districts,
        total_population=total,
        average_population=avg,
        population_variance=variance,
        max_deviation=max_dev,
        division_history=steps,
        labels=labels,
        history=history,
        warnings=warnings,
        converged=converged,
        balance_iterations=iterations,
        mode=mode,
    )


def run(
    tracts: Union[TractSet, Sequence[Tract]],
    cfg: dict,
    adjacency_table: Optional[AdjacencyTable] = None,
) -> DivisionResult:
    """Config-driven entry (run.* / algo.geodistrict.* keys)."""
    params = params_from_cfg(cfg)
    print(
        f"[GeoDistrict] districts={params.target_districts} strategy={params.traversal_strategy} "
        f"counties={params.preserve_county_boundaries} tol={params.population_tolerance}"
    )
    return divide_tracts(tracts, params, adjacency_table=adjacency_table)


# -----------------------------
# Helpers
# -----------------------------

def _snapshot_group(ts: TractSet, tracts: list[int], target: int, *, group_id: int, start: int) -> DistrictGroup:
    idx = np.asarray(tracts, dtype=int)
    return DistrictGroup(
        group_id=group_id,
        tracts=tuple(int(i) for i in idx),
        population=int(ts.population[idx].sum()) if len(idx) else 0,
        target_district_count=target,
        centroid=group_centroid(ts.centroids[idx]),
        bounds=group_bounds(ts.bounds[idx]),
        direction=NO_AXIS,
        start_district_number=start,
        end_district_number=start + target - 1,
    )


def _district_snapshot(ts: TractSet, labels: np.ndarray, target: int) -> tuple[DistrictGroup, ...]:
    return tuple(
        _snapshot_group(ts, [int(i) for i in np.where(labels == d)[0]], 1, group_id=d - 1, start=d)
        for d in range(1, target + 1)
    )


def _build_districts(ts: TractSet, labels: np.ndarray, target: int, adjacency) -> list[District]:
    out: list[District] = []
    for d in range(1, target + 1):
        idx = np.where(labels == d)[0]
        tracts = tuple(int(i) for i in idx)
        out.append(
            District(
                id=d,
                tracts=tracts,
                tract_ids=tuple(ts.ids[i] for i in tracts),
                population=int(ts.population[idx].sum()) if len(idx) else 0,
                bounds=group_bounds(ts.bounds[idx]),
                centroid=group_centroid(ts.centroids[idx]),
                contiguous=is_contiguous(tracts, adjacency),
                county_keys=tuple(sorted({ts.county_keys[i] for i in tracts})),
            )
        )
    return out
