from __future__ import annotations

import argparse
from pathlib import Path

import yaml

from geodistrict.algos.adjacency import GeometricAdjacency, find_contained_tracts
from geodistrict.data.adjacency_table import save_adjacency_table
from geodistrict.data.tracts import build_tract_set, load_tracts


def build_adjacency_by_id(tract_set, eps: float = 1e-6) -> dict[str, list[str]]:
    """Geometric neighbor lists keyed by tract geoid (spatial index + distance test)."""
    adj = GeometricAdjacency(tract_set, eps=eps)
    ids = tract_set.ids
    out: dict[str, list[str]] = {}
    for i in range(len(tract_set)):
        out[ids[i]] = [ids[j] for j in adj.neighbors(i)]
        if i % 500 == 0:
            print(f"  adjacency progress: {i}/{len(tract_set)}")
    return out


def main():
    ap = argparse.ArgumentParser(description="Precompute tract adjacency.json from a boundary file.")
    ap.add_argument("--config", default="config.yaml")
    ap.add_argument("--state", default=None)
    ap.add_argument("--tracts", default=None, help="tract file (overrides config)")
    ap.add_argument("--out", default=None, help="output json (overrides config)")
    ap.add_argument("--eps", type=float, default=None)
    ap.add_argument("--report-contained", action="store_true")
    args = ap.parse_args()

    repo_root = Path(__file__).resolve().parents[1]

    cfg = {}
    cfg_path = Path(args.config).expanduser()
    if not cfg_path.is_absolute():
        cfg_path = (repo_root / cfg_path).resolve()
    if cfg_path.exists():
        cfg = yaml.safe_load(cfg_path.read_text()) or {}

    data = dict(cfg.get("data", {}) or {})
    if args.state:
        scfg = (cfg.get("states", {}) or {}).get(args.state)
        if not scfg:
            raise KeyError(f"State '{args.state}' not found under cfg['states'].")
        data.update({k: v for k, v in scfg.items() if k in ("tracts_path", "tracts_layer", "adjacency_path")})

    tracts_raw = args.tracts or data.get("tracts_path")
    out_raw = args.out or data.get("adjacency_path")
    if not tracts_raw or not out_raw:
        raise KeyError("Need a tract file and an output path (--tracts/--out or data.tracts_path/data.adjacency_path).")

    tracts_path = Path(tracts_raw).expanduser()
    if not tracts_path.is_absolute():
        tracts_path = (repo_root / tracts_path).resolve()
    out_path = Path(out_raw).expanduser()
    if not out_path.is_absolute():
        out_path = (repo_root / out_path).resolve()

    eps = args.eps if args.eps is not None else float(
        ((cfg.get("algo", {}) or {}).get("geodistrict", {}) or {}).get("adjacency_epsilon", 1e-6)
    )

    print("1) loading tracts:", tracts_path)
    tract_set = build_tract_set(load_tracts(tracts_path, layer=data.get("tracts_layer")))
    print("   tracts:", len(tract_set))

    print("2) building adjacency (eps =", eps, ")...")
    table = build_adjacency_by_id(tract_set, eps=eps)
    n_edges = sum(len(v) for v in table.values()) // 2
    isolated = [k for k, v in table.items() if not v]
    print(f"   edges: {n_edges}  isolated tracts: {len(isolated)}")

    if args.report_contained:
        contained = find_contained_tracts(tract_set)
        print(f"   contained tracts: {len(contained)}")
        for inner, outer in contained[:20]:
            print(f"     {inner} inside {outer}")

    save_adjacency_table(table, out_path)
    print("✅ Wrote", out_path)


if __name__ == "__main__":
    main()
