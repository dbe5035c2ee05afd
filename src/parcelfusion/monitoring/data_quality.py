"""
Helpers for computing data-quality metrics over a detailed output file.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd


def load_detailed_properties(path: Union[str, Path]) -> pd.DataFrame:
    """Read the feature properties of a detailed FeatureCollection or NDJSON file."""
    path = Path(path)
    if path.suffix.lower() == ".ndjson":
        with path.open("r", encoding="utf-8") as f:
            features = [json.loads(line) for line in f if line.strip()]
    else:
        features = json.loads(path.read_text(encoding="utf-8")).get("features") or []
    return pd.DataFrame([feature.get("properties") or {} for feature in features])


def compute_detail_metrics(df: pd.DataFrame) -> Dict[str, Any]:
    """Return dating, category and completeness metrics for detailed properties."""
    if df.empty:
        return {"total": 0, "methods": {}, "confidence": {}, "categories": {}, "years": {}, "completeness": {}}

    total = len(df)
    years = df["year"].dropna()
    completeness = {
        column: round(float(df[column].notna().mean()), 4)
        for column in ("address", "city", "area", "stories", "units")
        if column in df.columns
    }

    return {
        "total": total,
        "estimated_share": round(float(df["estimated"].mean()), 4),
        "methods": df["method"].value_counts().to_dict(),
        "confidence": df["confidence"].value_counts().to_dict(),
        "categories": df["use"].value_counts().to_dict(),
        "years": {
            "min": int(years.min()),
            "max": int(years.max()),
            "median": float(years.median()),
        },
        "median_year_by_method": (
            df.groupby("method")["year"].median().round(1).to_dict()
        ),
        "completeness": completeness,
    }


def decade_histogram(df: pd.DataFrame) -> List[Dict[str, int]]:
    """Parcel counts per decade, split by estimated flag."""
    if df.empty:
        return []
    decades = (df["year"] // 10 * 10).astype(int)
    grouped = df.assign(decade=decades).groupby(["decade", "estimated"]).size().unstack(fill_value=0)
    rows = []
    for decade, counts in grouped.iterrows():
        rows.append({
            "decade": int(decade),
            "known": int(counts.get(False, 0)),
            "estimated": int(counts.get(True, 0)),
        })
    return rows
