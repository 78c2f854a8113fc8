from __future__ import annotations

from typing import Callable, Optional

import numpy as np
import pytest
from shapely.geometry import box

from geodistrict.data.tracts import Tract, build_tract_set

CELL = 0.5
LON0 = -100.0
LAT0 = 40.0


def cell_box(r: int, c: int):
    west = LON0 + c * CELL
    north = LAT0 - r * CELL
    return box(west, north - CELL, west + CELL, north)


def grid_tracts(
    rows: int,
    cols: int,
    pop: Callable[[int, int], int] | int = 100,
    county: Optional[Callable[[int, int], str]] = None,
    state: str = "17",
) -> list[Tract]:
    """Square tracts laid out row-major from the north-west corner (index = r * cols + c)."""
    out = []
    for r in range(rows):
        for c in range(cols):
            p = pop(r, c) if callable(pop) else pop
            cty = county(r, c) if county else "001"
            out.append(
                Tract(
                    state_fips=state,
                    county_fips=cty,
                    tract_fips=f"{r:03d}{c:03d}",
                    population=int(p),
                    geometry=cell_box(r, c),
                    name=f"Tract {r}-{c}",
                )
            )
    return out


def queen_table(rows: int, cols: int, state: str = "17", county: str = "001") -> dict[str, list[str]]:
    table = {}
    for r in range(rows):
        for c in range(cols):
            nbrs = []
            for dr in (-1, 0, 1):
                for dc in (-1, 0, 1):
                    if (dr, dc) == (0, 0):
                        continue
                    rr, cc = r + dr, c + dc
                    if 0 <= rr < rows and 0 <= cc < cols:
                        nbrs.append(f"{state}{county}{rr:03d}{cc:03d}")
            table[f"{state}{county}{r:03d}{c:03d}"] = nbrs
    return table


def cell_tracts(
    cells: list[tuple[int, int]],
    pop: Callable[[int, int], int] | int = 100,
    county: Optional[Callable[[int, int], str]] = None,
) -> list[Tract]:
    """Square tracts for an arbitrary set of grid cells (same ids as grid_tracts)."""
    out = []
    for r, c in sorted(cells):
        p = pop(r, c) if callable(pop) else pop
        out.append(
            Tract(
                state_fips="17",
                county_fips=county(r, c) if county else "001",
                tract_fips=f"{r:03d}{c:03d}",
                population=int(p),
                geometry=cell_box(r, c),
            )
        )
    return out


def cell_table(cells: list[tuple[int, int]], county: Optional[Callable[[int, int], str]] = None) -> dict[str, list[str]]:
    """Queen adjacency over an arbitrary set of grid cells."""
    present = set(cells)

    def gid(r, c):
        return f"17{county(r, c) if county else '001'}{r:03d}{c:03d}"

    table = {}
    for r, c in sorted(present):
        table[gid(r, c)] = [
            gid(r + dr, c + dc)
            for dr in (-1, 0, 1)
            for dc in (-1, 0, 1)
            if (dr, dc) != (0, 0) and (r + dr, c + dc) in present
        ]
    return table


def blob_cells(n: int, seed: int, size: int = 40) -> list[tuple[int, int]]:
    """Random edge-connected blob of n cells grown from the middle of a size x size board."""
    rng = np.random.default_rng(seed)
    cells = [(size // 2, size // 2)]
    present = set(cells)
    steps = [(-1, 0), (1, 0), (0, -1), (0, 1)]
    while len(cells) < n:
        r, c = cells[int(rng.integers(len(cells)))]
        dr, dc = steps[int(rng.integers(4))]
        cell = (r + dr, c + dc)
        if cell in present or not (0 <= cell[0] < size and 0 <= cell[1] < size):
            continue
        cells.append(cell)
        present.add(cell)
    return sorted(cells)


def _l_shape():
    return [(r, c) for r in range(6) for c in range(6) if not (r < 3 and c >= 3)]


def _u_shape():
    return [(r, c) for r in range(5) for c in range(7) if not (r < 3 and 2 <= c <= 4)]


def _notched_staircase():
    return [(r, c) for r in range(8) for c in range(8) if c <= r + 2 and (r, c) not in {(4, 1), (6, 3)}]


def _ring():
    return [(r, c) for r in range(6) for c in range(6) if not (2 <= r <= 3 and 2 <= c <= 3)]


IRREGULAR_SHAPES = {
    "l-shape": _l_shape,
    "u-shape": _u_shape,
    "notched-staircase": _notched_staircase,
    "ring": _ring,
    "blob-0": lambda: blob_cells(80, 0),
    "blob-1": lambda: blob_cells(80, 1),
    "blob-2": lambda: blob_cells(80, 2),
    "blob-3": lambda: blob_cells(80, 3),
}


@pytest.fixture
def grid4():
    return build_tract_set(grid_tracts(4, 4))


@pytest.fixture
def make_grid():
    def _make(rows, cols, pop=100, county=None):
        return build_tract_set(grid_tracts(rows, cols, pop=pop, county=county))

    return _make
