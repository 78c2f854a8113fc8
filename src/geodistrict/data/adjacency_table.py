from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Mapping

import pandas as pd

TRUE_STRINGS = {"1", "true", "t", "yes", "y"}


def symmetrize(table: Mapping[str, Iterable[str]]) -> dict[str, list[str]]:
    """Make every edge two-way and drop self loops. Ids are stringified."""
    out: dict[str, set[str]] = {}
    for u, nbrs in table.items():
        u = str(u)
        out.setdefault(u, set())
        for v in nbrs:
            v = str(v)
            if v == u:
                continue
            out[u].add(v)
            out.setdefault(v, set()).add(u)
    return {u: sorted(vs) for u, vs in sorted(out.items())}


def adjacency_table_from_pairs(pairs: Mapping[tuple[str, str], bool]) -> dict[str, list[str]]:
    """Sparse {(a, b): shares_boundary} map -> neighbor lists. False pairs only register the ids."""
    table: dict[str, list[str]] = {}
    for (a, b), adjacent in pairs.items():
        table.setdefault(str(a), [])
        table.setdefault(str(b), [])
        if adjacent:
            table[str(a)].append(str(b))
    return symmetrize(table)


def _truthy(v) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in TRUE_STRINGS
    try:
        return bool(v) and not pd.isna(v)
    except (TypeError, ValueError):
        return bool(v)


def load_adjacency_table(path: str | Path) -> dict[str, list[str]]:
    """
    Read a precomputed adjacency table.

    .json : {"<geoid>": ["<geoid>", ...], ...}  (what scripts/build_adjacency.py writes)
    .csv  : pairs with columns source,target[,adjacent]; rows whose adjacent is false are dropped
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Missing adjacency table at {path}")

    if path.suffix.lower() == ".json":
        raw = json.loads(path.read_text())
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: expected a JSON object of neighbor lists, got {type(raw).__name__}")
        return symmetrize(raw)

    df = pd.read_csv(path, dtype=str)
    for c in ("source", "target"):
        if c not in df.columns:
            raise KeyError(f"{path}: missing '{c}' column. Available: {list(df.columns)}")

    pairs: dict[tuple[str, str], bool] = {}
    flags = df["adjacent"].map(_truthy) if "adjacent" in df.columns else pd.Series(True, index=df.index)
    for a, b, ok in zip(df["source"], df["target"], flags):
        if pd.isna(a) or pd.isna(b):
            continue
        key = (str(a).strip(), str(b).strip())
        pairs[key] = pairs.get(key, False) or bool(ok)
    return adjacency_table_from_pairs(pairs)


def save_adjacency_table(table: Mapping[str, Iterable[str]], path: str | Path) -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(symmetrize(table), indent=0))
    return path
