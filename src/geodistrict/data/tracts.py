from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry.base import BaseGeometry

from geodistrict.algos.geometry import (
    Bounds,
    LatLng,
    as_geometry,
    tract_bounds,
    tract_centroid,
)
from geodistrict.algos.model import DivisionInputError

# Column names accepted for each identity field, in preference order.
STATE_COLS = ("STATE_FIPS", "STATE", "STATEFP")
COUNTY_COLS = ("COUNTY_FIPS", "COUNTY", "COUNTYFP")
TRACT_COLS = ("TRACT_FIPS", "TRACT", "TRACTCE")
POPULATION_COLS = ("POPULATION", "TOTPOP", "P1_001N")
NAME_COLS = ("NAME", "NAMELSAD")


@dataclass(frozen=True)
class Tract:
    state_fips: str
    county_fips: str
    tract_fips: str
    population: int
    geometry: BaseGeometry | None
    name: str = ""
    # upstream passthrough properties
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def geoid(self) -> str:
        return f"{self.state_fips}{self.county_fips}{self.tract_fips}"

    @property
    def county_key(self) -> str:
        return f"{self.state_fips}{self.county_fips}"

    @property
    def centroid(self) -> LatLng:
        return tract_centroid(self.geometry)

    @property
    def bounds(self) -> Bounds:
        return tract_bounds(self.geometry)


@dataclass
class TractSet:
    tracts: list[Tract]
    ids: list[str]
    id_to_idx: dict[str, int]
    population: np.ndarray  # (N,) int64
    centroids: np.ndarray  # (N,2) [lat, lng]
    bounds: np.ndarray  # (N,4) [north, south, east, west]
    county_keys: list[str]

    def __len__(self) -> int:
        return len(self.tracts)

    @property
    def geometries(self) -> list[BaseGeometry | None]:
        return [t.geometry for t in self.tracts]

    @property
    def total_population(self) -> int:
        return int(self.population.sum())


def build_tract_set(tracts: Sequence[Tract]) -> TractSet:
    """Validate tract identities/populations and precompute centroids + bounds."""
    tracts = list(tracts)
    if not tracts:
        raise DivisionInputError("Tract list is empty.")

    ids = [t.geoid for t in tracts]
    id_to_idx: dict[str, int] = {}
    for i, uid in enumerate(ids):
        if uid in id_to_idx:
            raise DivisionInputError(f"Duplicate tract key '{uid}' (rows {id_to_idx[uid]} and {i}).")
        id_to_idx[uid] = i

    population = np.array([t.population for t in tracts], dtype=np.int64)
    if np.any(population < 0):
        bad = [ids[i] for i in np.where(population < 0)[0][:10]]
        raise DivisionInputError(f"Negative tract population for: {bad}")

    centroids = np.array([tract_centroid(t.geometry) for t in tracts], dtype=float).reshape(-1, 2)
    bounds = np.array([tract_bounds(t.geometry).as_tuple() for t in tracts], dtype=float).reshape(-1, 4)

    return TractSet(
        tracts=tracts,
        ids=ids,
        id_to_idx=id_to_idx,
        population=population,
        centroids=centroids,
        bounds=bounds,
        county_keys=[t.county_key for t in tracts],
    )


# ----------------------------
# Loaders
# ----------------------------

def _pick_col(columns: Iterable[str], candidates: Sequence[str], what: str, required: bool = True) -> str | None:
    cols = list(columns)
    for c in candidates:
        if c in cols:
            return c
    if required:
        raise KeyError(
            f"Could not find a {what} column. Tried {list(candidates)}.\n"
            f"Available columns: {cols[:60]}"
        )
    return None


def _as_population(value: Any) -> int:
    if value is None:
        return 0
    try:
        if pd.isna(value):
            return 0
    except (TypeError, ValueError):
        pass
    return int(round(float(value)))


def tracts_from_geodataframe(gdf: gpd.GeoDataFrame, *, population_col: str | None = None) -> list[Tract]:
    """
    Convert a tract GeoDataFrame into Tract records.

    Identity columns are matched against STATE_FIPS/STATE/STATEFP etc. Missing
    population values become 0 (same default the census join used upstream).
    Every other non-geometry column is carried in Tract.extra.
    """
    cols = [c for c in gdf.columns if c != gdf.geometry.name]
    state_col = _pick_col(cols, STATE_COLS, "state FIPS")
    county_col = _pick_col(cols, COUNTY_COLS, "county FIPS")
    tract_col = _pick_col(cols, TRACT_COLS, "tract FIPS")
    pop_col = population_col or _pick_col(cols, POPULATION_COLS, "population")
    if pop_col not in cols:
        raise KeyError(f"population_col='{pop_col}' not found. Available columns: {cols[:60]}")
    name_col = _pick_col(cols, NAME_COLS, "name", required=False)

    known = {state_col, county_col, tract_col, pop_col, name_col}
    extra_cols = [c for c in cols if c not in known]

    out: list[Tract] = []
    for row, geom in zip(gdf[cols].to_dict(orient="records"), gdf.geometry.values):
        out.append(
            Tract(
                state_fips=str(row[state_col]),
                county_fips=str(row[county_col]),
                tract_fips=str(row[tract_col]),
                population=_as_population(row[pop_col]),
                geometry=geom,
                name=str(row[name_col]) if name_col and row.get(name_col) is not None else "",
                extra={c: row[c] for c in extra_cols},
            )
        )
    return out


def tracts_from_features(features: Iterable[Mapping[str, Any]]) -> list[Tract]:
    """Build tracts from GeoJSON feature dicts (properties + geometry)."""
    out: list[Tract] = []
    for feat in features:
        props = dict(feat.get("properties") or {})
        state_col = _pick_col(props, STATE_COLS, "state FIPS")
        county_col = _pick_col(props, COUNTY_COLS, "county FIPS")
        tract_col = _pick_col(props, TRACT_COLS, "tract FIPS")
        pop_col = _pick_col(props, POPULATION_COLS, "population", required=False)
        name_col = _pick_col(props, NAME_COLS, "name", required=False)
        known = {state_col, county_col, tract_col, pop_col, name_col}
        out.append(
            Tract(
                state_fips=str(props[state_col]),
                county_fips=str(props[county_col]),
                tract_fips=str(props[tract_col]),
                population=_as_population(props.get(pop_col)) if pop_col else 0,
                geometry=as_geometry(feat.get("geometry")),
                name=str(props.get(name_col) or "") if name_col else "",
                extra={k: v for k, v in props.items() if k not in known},
            )
        )
    return out


def attach_population(
    gdf: gpd.GeoDataFrame,
    demographics: pd.DataFrame,
    *,
    population_col: str = "population",
) -> gpd.GeoDataFrame:
    """
    Join a demographics table (state, county, tract, population[, name]) onto
    tract boundaries by full FIPS key. Unmatched tracts get POPULATION=0.
    """
    cols = [c for c in gdf.columns if c != gdf.geometry.name]
    state_col = _pick_col(cols, STATE_COLS, "state FIPS")
    county_col = _pick_col(cols, COUNTY_COLS, "county FIPS")
    tract_col = _pick_col(cols, TRACT_COLS, "tract FIPS")

    for c in ("state", "county", "tract", population_col):
        if c not in demographics.columns:
            raise KeyError(f"demographics missing '{c}'. Available: {list(demographics.columns)[:50]}")

    gdf = gdf.copy()
    gdf["_fips"] = (
        gdf[state_col].astype(str) + gdf[county_col].astype(str) + gdf[tract_col].astype(str)
    )

    demo = demographics.copy()
    demo["_fips"] = demo["state"].astype(str) + demo["county"].astype(str) + demo["tract"].astype(str)
    keep = ["_fips", population_col] + (["name"] if "name" in demo.columns else [])
    demo = demo[keep].drop_duplicates("_fips").rename(columns={population_col: "_pop", "name": "_name"})

    gdf = gdf.merge(demo, on="_fips", how="left")
    gdf["POPULATION"] = gdf["_pop"].fillna(0).astype(float).round().astype(int)
    if "_name" in gdf.columns:
        if "NAME" in gdf.columns:
            gdf["NAME"] = gdf["_name"].fillna(gdf["NAME"])
        else:
            gdf["NAME"] = gdf["_name"]
        gdf = gdf.drop(columns=["_name"])

    matched = int(gdf["_pop"].notna().sum())
    print(f"   matched {matched}/{len(gdf)} tracts with demographic data")
    return gdf.drop(columns=["_fips", "_pop"])


def load_tracts(path: str | Path, *, layer: str | None = None, population_col: str | None = None) -> list[Tract]:
    """Read a tract boundary file (GeoJSON / GPKG / shapefile) into Tract records, EPSG:4326."""
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Missing tract file at {path}")

    gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
    if gdf.crs is not None and gdf.crs.to_epsg() != 4326:
        gdf = gdf.to_crs(epsg=4326)
    gdf["geometry"] = gdf["geometry"].buffer(0)
    return tracts_from_geodataframe(gdf, population_col=population_col)
