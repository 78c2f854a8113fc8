from __future__ import annotations

import json
from pathlib import Path

import geopandas as gpd
import pandas as pd

from geodistrict.algos.model import DivisionResult
from geodistrict.data.tracts import TractSet


def _steps_payload(result: DivisionResult) -> list[dict]:
    out = []
    for s in result.division_history:
        out.append(
            {
                "step": s.step,
                "level": s.level,
                "axis": s.axis,
                "description": s.description,
                "total_groups": s.total_groups,
                "total_districts": s.total_districts,
                "groups": [
                    {
                        "group_id": g.group_id,
                        "population": g.population,
                        "target_district_count": g.target_district_count,
                        "start_district_number": g.start_district_number,
                        "end_district_number": g.end_district_number,
                        "direction": g.direction,
                        "n_tracts": len(g.tracts),
                        "centroid": list(g.centroid),
                    }
                    for g in s.groups
                ],
            }
        )
    return out


def export_result(
    result: DivisionResult,
    tract_set: TractSet,
    run_dir: Path,
    *,
    simplify_tol_districts: float = 0.0,
) -> Path:
    """
    Write a run folder:
      unit_to_district.csv, district_stats.csv/json, division_steps.json,
      history.txt and districts.geojson (dissolved outlines, EPSG:4326).
    """
    run_dir = Path(run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)

    labels = result.labels.tolist()
    if len(labels) != len(tract_set):
        raise ValueError(f"labels length ({len(labels)}) != tracts length ({len(tract_set)})")

    # ---- Mapping ----
    mapping = pd.DataFrame(
        {
            "unit_id": tract_set.ids,
            "county": tract_set.county_keys,
            "population": tract_set.population,
            "district": labels,
        }
    )
    mapping.to_csv(run_dir / "unit_to_district.csv", index=False)

    # ---- District stats ----
    stats = result.to_frame()
    stats.to_csv(run_dir / "district_stats.csv", index=False)
    summary = {
        "mode": result.mode,
        "total_population": result.total_population,
        "average_population": result.average_population,
        "population_variance": result.population_variance,
        "max_deviation": result.max_deviation,
        "converged": result.converged,
        "balance_iterations": result.balance_iterations,
        "warnings": result.warnings,
        "districts": stats.to_dict(orient="records"),
    }
    (run_dir / "district_stats.json").write_text(json.dumps(summary, indent=2, default=_json_default))

    # ---- Replay / debug ----
    (run_dir / "division_steps.json").write_text(json.dumps(_steps_payload(result), indent=2))
    (run_dir / "history.txt").write_text("\n".join(result.history + [f"WARNING: {w}" for w in result.warnings]) + "\n")

    # ---- District outlines ----
    gdf = gpd.GeoDataFrame(mapping, geometry=tract_set.geometries, crs="EPSG:4326")
    gdf = gdf[~gdf.geometry.isna()]
    if len(gdf):
        districts = gdf.dissolve(by="district", as_index=False, aggfunc={"population": "sum"})
        if simplify_tol_districts and simplify_tol_districts > 0:
            districts["geometry"] = districts["geometry"].simplify(simplify_tol_districts, preserve_topology=True)
        districts[["district", "population", "geometry"]].to_file(run_dir / "districts.geojson", driver="GeoJSON")

    print(f"✅ Exported run to: {run_dir}")
    print("   - unit_to_district.csv")
    print("   - district_stats.json / district_stats.csv")
    print("   - division_steps.json / history.txt")
    print("   - districts.geojson (district borders)")
    return run_dir


def _json_default(o):
    # numpy scalars from DataFrame records
    if hasattr(o, "item"):
        return o.item()
    raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")
