from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path

import geopandas as gpd
import pandas as pd
import yaml

from geodistrict.algos.geodistrict import params_from_cfg, divide_tracts
from geodistrict.data.adjacency_table import load_adjacency_table
from geodistrict.data.export import export_result
from geodistrict.data.tracts import attach_population, build_tract_set, tracts_from_geodataframe


def _resolve_repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _resolve_path(raw: str, repo_root: Path) -> Path:
    p = Path(raw).expanduser()
    if not p.is_absolute():
        p = (repo_root / p).resolve()
    return p


def _apply_state_override(cfg: dict, state: str) -> dict:
    """
    If cfg has a states.<state> entry, override data/run/paths for this run.
    Does NOT write back to config.yaml; only modifies the in-memory cfg.
    """
    scfg = (cfg.get("states", {}) or {}).get(state)
    if not scfg:
        raise KeyError(f"State '{state}' not found under cfg['states'].")

    cfg = dict(cfg)  # shallow copy
    cfg["data"] = dict(cfg.get("data", {}) or {})
    cfg["run"] = dict(cfg.get("run", {}) or {})
    cfg["paths"] = dict(cfg.get("paths", {}) or {})

    for key in ("tracts_path", "tracts_layer", "adjacency_path", "demographics_path", "population_col"):
        if scfg.get(key):
            cfg["data"][key] = scfg[key]
    if scfg.get("num_districts") is not None:
        cfg["run"]["num_districts"] = int(scfg["num_districts"])
    if scfg.get("outputs_dir"):
        cfg["paths"]["outputs_dir"] = scfg["outputs_dir"]
    cfg["run"]["state"] = state
    return cfg


def _update_latest_manifest(outputs_root: Path, key: str, run_folder_name: str):
    """outputs/latest.json: { "<key>": "<run folder>" }"""
    manifest_path = outputs_root / "latest.json"
    latest = {}
    if manifest_path.exists():
        try:
            latest = json.loads(manifest_path.read_text())
        except json.JSONDecodeError:
            latest = {}
        if not isinstance(latest, dict):
            latest = {}

    latest[key] = run_folder_name
    manifest_path.write_text(json.dumps(latest, indent=2))
    print("✅ Updated manifest:", manifest_path)


def main():
    ap = argparse.ArgumentParser(description="Recursive bisection districting over census tracts.")
    ap.add_argument("--config", default="config.yaml")
    ap.add_argument("--state", default=None, help="key under states: in the config")
    ap.add_argument("--districts", type=int, default=None, help="override run.num_districts")
    ap.add_argument("--strategy", default=None, help="override algo.geodistrict.traversal_strategy")
    ap.add_argument("--no-counties", action="store_true", help="pure geographic bisection")
    args = ap.parse_args()

    repo_root = _resolve_repo_root()
    cfg_path = _resolve_path(args.config, repo_root)

    print("1) loading config...")
    print("   config =", cfg_path)
    cfg = yaml.safe_load(cfg_path.read_text()) or {}
    if args.state:
        cfg = _apply_state_override(cfg, args.state)
        print(f"✅ run_geodistrict using state='{args.state}'")

    cfg.setdefault("run", {})
    cfg.setdefault("algo", {})
    cfg["algo"] = dict(cfg["algo"] or {})
    cfg["algo"]["geodistrict"] = dict(cfg["algo"].get("geodistrict", {}) or {})
    if args.districts is not None:
        cfg["run"]["num_districts"] = args.districts
    if args.strategy:
        cfg["algo"]["geodistrict"]["traversal_strategy"] = args.strategy
    if args.no_counties:
        cfg["algo"]["geodistrict"]["preserve_county_boundaries"] = False

    data = cfg.get("data", {}) or {}
    if not data.get("tracts_path"):
        raise KeyError("Missing data.tracts_path in config (or states.<state>.tracts_path).")
    tracts_path = _resolve_path(data["tracts_path"], repo_root)
    if not tracts_path.exists():
        raise FileNotFoundError(f"Missing tract file at {tracts_path}")

    print("2) loading tracts...")
    gdf = gpd.read_file(tracts_path, layer=data["tracts_layer"]) if data.get("tracts_layer") else gpd.read_file(tracts_path)
    if gdf.crs is not None and gdf.crs.to_epsg() != 4326:
        gdf = gdf.to_crs(epsg=4326)
    gdf["geometry"] = gdf["geometry"].buffer(0)
    print("   loaded:", len(gdf), "tracts")

    if data.get("demographics_path"):
        demo_path = _resolve_path(data["demographics_path"], repo_root)
        print("   joining demographics:", demo_path)
        demo = pd.read_csv(demo_path, dtype={"state": str, "county": str, "tract": str})
        gdf = attach_population(gdf, demo, population_col=data.get("demographics_population_col", "population"))

    tract_set = build_tract_set(tracts_from_geodataframe(gdf, population_col=data.get("population_col")))
    print("   total population:", tract_set.total_population)

    table = None
    if data.get("adjacency_path"):
        adj_path = _resolve_path(data["adjacency_path"], repo_root)
        print("3) loading adjacency table...")
        table = load_adjacency_table(adj_path)
        print("   table ids:", len(table))
    else:
        print("3) no adjacency table; geometric adjacency will be used")

    params = params_from_cfg(cfg)
    print("4) dividing...")
    print(
        f"   districts={params.target_districts} strategy={params.traversal_strategy} "
        f"counties={params.preserve_county_boundaries} tol={params.population_tolerance}"
    )
    result = divide_tracts(tract_set, params, adjacency_table=table)
    print(
        f"   average={result.average_population:.1f} max_dev={result.max_deviation:.2%} "
        f"converged={result.converged} balance_moves={result.balance_iterations}"
    )
    for w in result.warnings:
        print("   ⚠️", w)

    # ---- output folder (timestamped) ----
    paths = cfg.get("paths", {}) or {}
    outputs_root = _resolve_path(paths.get("outputs_dir", "outputs"), repo_root)
    outputs_root.mkdir(parents=True, exist_ok=True)

    state = cfg["run"].get("state", "run")
    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_folder = f"geodistrict_{state}_{run_id}"

    print("5) exporting...")
    export_result(result, tract_set, outputs_root / run_folder)
    _update_latest_manifest(outputs_root, f"geodistrict_{state}", run_folder)

    print("✅ Saved run:", outputs_root / run_folder)


if __name__ == "__main__":
    main()
