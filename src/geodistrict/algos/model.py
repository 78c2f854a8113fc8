from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from geodistrict.algos.geometry import Bounds, LatLng

Axis = str  # "latitude" | "longitude" | "none"

LATITUDE: Axis = "latitude"
LONGITUDE: Axis = "longitude"
NO_AXIS: Axis = "none"


class DivisionInputError(ValueError):
    """Input that cannot produce a partition (reported before any work is done)."""


# ----------------------------
# Recursion nodes
# ----------------------------

@dataclass(frozen=True)
class DistrictGroup:
    group_id: int
    tracts: Tuple[int, ...]
    population: int
    target_district_count: int
    centroid: LatLng
    bounds: Bounds
    direction: Axis
    start_district_number: int
    end_district_number: int
    depth: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.target_district_count == 1


@dataclass(frozen=True)
class Terminal:
    group: DistrictGroup


@dataclass(frozen=True)
class Split:
    group: DistrictGroup
    axis: Axis
    children: Tuple[int, int]
    ratio: Tuple[float, float]
    jumps: int = 0
    cut_shift: int = 0  # signed distance from the population cut to the contiguous one used


Node = Union[Terminal, Split]


@dataclass
class BisectionTree:
    """Arena of groups indexed by group_id; nodes record how each group resolved."""

    groups: Dict[int, DistrictGroup] = field(default_factory=dict)
    nodes: Dict[int, Node] = field(default_factory=dict)
    root_id: Optional[int] = None

    def add(self, group: DistrictGroup) -> DistrictGroup:
        self.groups[group.group_id] = group
        if self.root_id is None:
            self.root_id = group.group_id
        return group

    def terminals(self) -> List[DistrictGroup]:
        out = [n.group for n in self.nodes.values() if isinstance(n, Terminal)]
        out.sort(key=lambda g: g.start_district_number)
        return out

    def children_of(self, group_id: int) -> Tuple[DistrictGroup, ...]:
        node = self.nodes.get(group_id)
        if isinstance(node, Split):
            return tuple(self.groups[c] for c in node.children)
        return ()


# ----------------------------
# Output records
# ----------------------------

@dataclass(frozen=True)
class District:
    id: int
    tracts: Tuple[int, ...]
    tract_ids: Tuple[str, ...]
    population: int
    bounds: Bounds
    centroid: LatLng
    contiguous: bool
    county_keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DivisionStep:
    step: int
    level: int
    groups: Tuple[DistrictGroup, ...]
    description: str
    axis: Axis = NO_AXIS

    @property
    def total_groups(self) -> int:
        return len(self.groups)

    @property
    def total_districts(self) -> int:
        return sum(g.target_district_count for g in self.groups)


@dataclass
class DivisionResult:
    districts: List[District]
    total_population: int
    average_population: float
    population_variance: float
    max_deviation: float
    division_history: List[DivisionStep]
    labels: np.ndarray  # (N,) district id per tract index
    history: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    converged: bool = True
    balance_iterations: int = 0
    mode: str = "county"

    def to_frame(self) -> pd.DataFrame:
        ideal = self.average_population
        rows = []
        for d in self.districts:
            rows.append(
                {
                    "district": d.id,
                    "population": d.population,
                    "deviation": d.population - ideal,
                    "deviation_pct": ((d.population - ideal) / ideal * 100) if ideal > 0 else 0.0,
                    "n_tracts": len(d.tracts),
                    "n_counties": len(d.county_keys),
                    "contiguous": d.contiguous,
                    "centroid_lat": d.centroid[0],
                    "centroid_lng": d.centroid[1],
                    "north": d.bounds.north,
                    "south": d.bounds.south,
                    "east": d.bounds.east,
                    "west": d.bounds.west,
                }
            )
        return pd.DataFrame(rows)


def population_stats(pops: np.ndarray) -> tuple[int, float, float, float]:
    """total, average, variance (mean squared deviation), max relative deviation."""
    pops = np.asarray(pops, dtype=float)
    total = int(round(float(pops.sum())))
    if pops.size == 0:
        return total, 0.0, 0.0, 0.0
    avg = float(pops.sum() / pops.size)
    variance = float(np.mean((pops - avg) ** 2))
    max_dev = float(np.max(np.abs(pops - avg)) / avg) if avg > 0 else 0.0
    return total, avg, variance, max_dev
