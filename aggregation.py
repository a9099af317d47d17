# aggregation.py
"""
Derived views over the emissions table.

All functions are pure: they take the loaded frame, the resolved columns and
(where relevant) a FilterConfig and a unit, and return fresh DataFrames or
dicts. Nothing is cached here; the Streamlit layer memoises whole views.

Values come in tonnes and are divided by the unit divisor (Gt or Mt). Years
that are missing, non-finite or non-integral are skipped; co2 that cannot be
parsed counts as zero.
"""
import logging
from typing import List, Optional

import numpy as np
import pandas as pd

from entities import FilterConfig, visible_mask
from utils import ColumnSpec

logger = logging.getLogger(__name__)

UNIT_DIVISORS = {"Gt": 1e9, "Mt": 1e6}

SERIES_COLS = ["year", "value"]
TOP_COLS = ["entity", "value"]
DELTA_COLS = ["entity", "delta_abs", "delta_pct"]
PEAK_COLS = ["entity", "year", "value"]


def unit_divisor(unit: str) -> float:
    try:
        return UNIT_DIVISORS[unit]
    except KeyError:
        raise ValueError(f"Unknown unit {unit!r}; expected one of {list(UNIT_DIVISORS)}") from None


# =========================
# Column access
# =========================
def numeric_years(frame: pd.DataFrame, columns: ColumnSpec) -> pd.Series:
    y = pd.to_numeric(frame[columns.year], errors="coerce").astype(float)
    y = y.where(np.isfinite(y))
    return y.where(y == np.floor(y))


def numeric_co2(frame: pd.DataFrame, columns: ColumnSpec) -> pd.Series:
    v = pd.to_numeric(frame[columns.co2], errors="coerce").astype(float)
    return v.where(np.isfinite(v), 0.0)


def tidy_rows(frame: pd.DataFrame, columns: ColumnSpec, filters: Optional[FilterConfig] = None) -> pd.DataFrame:
    """Canonical [entity, year, co2] rows in scan order, optionally filtered, valid years only."""
    out = pd.DataFrame({
        "entity": frame[columns.entity],
        "year": numeric_years(frame, columns),
        "co2": numeric_co2(frame, columns),
    })
    if filters is not None:
        out = out[visible_mask(frame, columns, filters)]
    out = out.dropna(subset=["year"]).copy()
    out["year"] = out["year"].astype("int64")
    return out.reset_index(drop=True)


def available_years(frame: pd.DataFrame, columns: ColumnSpec) -> List[int]:
    y = numeric_years(frame, columns).dropna()
    return sorted(int(v) for v in y.unique())


def display_year(years: List[int], year_max: Optional[int]) -> Optional[int]:
    # a too-high upper bound is pulled down to the data's last year
    if not years:
        return None
    if year_max is None:
        return years[-1]
    return min(int(year_max), years[-1])


# =========================
# Global series & summary
# =========================
def compute_global_series(frame: pd.DataFrame, columns: ColumnSpec, unit: str) -> pd.DataFrame:
    """World total per year: every row counts, whatever the filters say."""
    div = unit_divisor(unit)
    rows = tidy_rows(frame, columns)
    if rows.empty:
        return pd.DataFrame(columns=SERIES_COLS)
    sums = rows.groupby("year", sort=True)["co2"].sum()
    out = pd.DataFrame({"year": sums.index.astype("int64"), "value": sums.to_numpy() / div})
    return out.reset_index(drop=True)


def _point(series: pd.DataFrame, i: int) -> dict:
    return {"year": int(series["year"].iloc[i]), "value": float(series["value"].iloc[i])}


def _extremes(series: pd.DataFrame) -> dict:
    # argmax/argmin return the first position on ties
    values = series["value"].to_numpy(dtype=float)
    return {"peak": _point(series, int(np.argmax(values))),
            "valley": _point(series, int(np.argmin(values)))}


def compute_summary(series: pd.DataFrame) -> Optional[dict]:
    if series is None or series.empty:
        return None
    last = _point(series, -1)
    if len(series) >= 2:
        previous = _point(series, -2)
    else:
        previous = {"year": last["year"] - 1, "value": 0.0}
    yoy = (last["value"] - previous["value"]) / previous["value"] * 100 if previous["value"] else 0.0
    return {"last": last, "previous": previous, "yoy_pct": yoy, **_extremes(series)}


def yoy_series(series: pd.DataFrame) -> pd.DataFrame:
    """Year-over-year % for every point after the first; zero previous gives 0."""
    if series is None or len(series) < 2:
        return pd.DataFrame(columns=["year", "yoy_pct"])
    values = series["value"].to_numpy(dtype=float)
    pct = [(cur - prev) / prev * 100 if prev else 0.0 for prev, cur in zip(values[:-1], values[1:])]
    return pd.DataFrame({"year": series["year"].iloc[1:].to_numpy(), "yoy_pct": pct})


def clamp_series(series: pd.DataFrame, year_min: Optional[int], year_max: Optional[int]) -> pd.DataFrame:
    keep = pd.Series(True, index=series.index)
    if year_min is not None:
        keep &= series["year"] >= year_min
    if year_max is not None:
        keep &= series["year"] <= year_max
    return series[keep].reset_index(drop=True)


def visible_series(series: pd.DataFrame, year_min: Optional[int], year_max: Optional[int]) -> pd.DataFrame:
    clamped = clamp_series(series, year_min, year_max)
    return clamped if not clamped.empty else series.reset_index(drop=True)


def compute_local_extremes(series: pd.DataFrame, year_min: Optional[int] = None,
                           year_max: Optional[int] = None) -> dict:
    shown = visible_series(series, year_min, year_max)
    if shown.empty:
        return {"peak": None, "valley": None}
    return _extremes(shown)


# =========================
# Top-N ranking
# =========================
def _sum_by_entity(rows: pd.DataFrame) -> pd.Series:
    # sort=False keeps first-appearance order, which is the tie-break downstream
    return rows.groupby("entity", sort=False)["co2"].sum()


def compute_top_n(frame: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig, unit: str,
                  year: Optional[int], n: int = 5, series: Optional[pd.DataFrame] = None) -> dict:
    if year is None:
        return {"year": None, "entries": pd.DataFrame(columns=TOP_COLS), "world_total": 0.0}
    div = unit_divisor(unit)
    if series is None:
        series = compute_global_series(frame, columns, unit)
    hit = series.loc[series["year"] == year, "value"]
    world_total = float(hit.iloc[0]) if not hit.empty else 0.0

    rows = tidy_rows(frame, columns, filters)
    sums = _sum_by_entity(rows[rows["year"] == year]) / div
    entries = (sums.rename("value").rename_axis("entity").reset_index()
               .sort_values("value", ascending=False, kind="stable")
               .head(n).reset_index(drop=True))
    logger.debug("Top %d for %s: %d candidates, world %.4f %s", n, year, len(sums), world_total, unit)
    return {"year": year, "entries": entries[TOP_COLS], "world_total": world_total}


def top_share_ring(entries: pd.DataFrame, world_total: float, k: int = 5) -> dict:
    top = float(entries["value"].head(k).fillna(0).sum()) if not entries.empty else 0.0
    # filtered top-k can exceed the unfiltered total (e.g. "World" itself is in the list)
    return {"top": top, "rest": max(0.0, (world_total or 0.0) - top)}


# =========================
# Rising / falling
# =========================
def _delta_pct(current: float, previous: float) -> float:
    if previous:
        return (current - previous) / previous * 100
    return 100.0 if current else 0.0


def empty_changes(year: Optional[int] = None) -> dict:
    return {
        "year": year,
        "rising_count": 0, "falling_count": 0, "unchanged_count": 0,
        "rising": pd.DataFrame(columns=DELTA_COLS),
        "falling": pd.DataFrame(columns=DELTA_COLS),
        "unchanged": pd.DataFrame(columns=["entity"]),
    }


def classify_changes(frame: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig, unit: str,
                     year: Optional[int]) -> dict:
    """Compare each visible entity's total in `year` with `year - 1`; absent means zero."""
    if year is None:
        return empty_changes()
    div = unit_divisor(unit)
    rows = tidy_rows(frame, columns, filters)
    cur = _sum_by_entity(rows[rows["year"] == year])
    prev = _sum_by_entity(rows[rows["year"] == year - 1])

    # union: entities of `year` first, then the ones only seen the year before
    entities = list(cur.index) + [e for e in prev.index if e not in cur.index]
    rising, falling, unchanged = [], [], []
    for ent in entities:
        v = float(cur.get(ent, 0.0)) / div
        vp = float(prev.get(ent, 0.0)) / div
        delta = v - vp
        if delta > 0:
            rising.append((ent, delta, _delta_pct(v, vp)))
        elif delta < 0:
            falling.append((ent, delta, _delta_pct(v, vp)))
        else:
            unchanged.append(ent)

    rising_df = pd.DataFrame(rising, columns=DELTA_COLS).sort_values("delta_abs", ascending=False, kind="stable")
    falling_df = pd.DataFrame(falling, columns=DELTA_COLS).sort_values("delta_abs", ascending=True, kind="stable")
    unchanged_df = pd.DataFrame({"entity": sorted(unchanged, key=str)})
    logger.debug("Changes %s vs %s: +%d -%d =%d", year, year - 1, len(rising), len(falling), len(unchanged))
    return {
        "year": year,
        "rising_count": len(rising), "falling_count": len(falling), "unchanged_count": len(unchanged),
        "rising": rising_df.reset_index(drop=True),
        "falling": falling_df.reset_index(drop=True),
        "unchanged": unchanged_df,
    }


# =========================
# Historical peaks
# =========================
def compute_peaks(frame: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig, unit: str,
                  top_k: int = 15) -> pd.DataFrame:
    div = unit_divisor(unit)
    rows = tidy_rows(frame, columns, filters)
    if rows.empty:
        return pd.DataFrame(columns=PEAK_COLS)
    # idxmax picks the first row holding the maximum, i.e. strictly-greater in scan order
    first_max = rows.groupby("entity", sort=False)["co2"].idxmax()
    peaks = rows.loc[first_max.to_numpy()].copy()
    peaks["value"] = peaks["co2"] / div
    peaks = peaks.sort_values("value", ascending=False, kind="stable").head(top_k)
    return peaks[PEAK_COLS].reset_index(drop=True)


def entity_history(frame: pd.DataFrame, columns: ColumnSpec, entity: str, unit: str) -> pd.DataFrame:
    div = unit_divisor(unit)
    rows = tidy_rows(frame, columns)
    rows = rows[rows["entity"].astype(str) == str(entity)]
    if rows.empty:
        return pd.DataFrame(columns=SERIES_COLS)
    sums = rows.groupby("year", sort=True)["co2"].sum() / div
    return pd.DataFrame({"year": sums.index.astype("int64"), "value": sums.to_numpy()})
