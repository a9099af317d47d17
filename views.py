# views.py
# Cached view builders for the Streamlit pages. The derivations themselves live
# in aggregation.py and stay pure; memoisation happens here, per input tuple.
import logging

import pandas as pd
import streamlit as st

from aggregation import (
    available_years, classify_changes, compute_global_series, compute_local_extremes,
    compute_peaks, compute_summary, compute_top_n, display_year, entity_history, numeric_co2,
    numeric_years, top_share_ring, unit_divisor, visible_series,
)
from entities import CATEGORY_LABELS, FilterConfig, entity_categories, selectable_entities, visible_mask
from utils import PEAKS_TOP_K, TOP_N, ColumnSpec, iso_country_name

logger = logging.getLogger(__name__)

HASH_FUNCS = {FilterConfig: FilterConfig.cache_key, ColumnSpec: ColumnSpec.cache_key}

# Widget keys owned by the home-page sidebar; see keep_widget_state()
WIDGET_KEYS = ["unit", "hide_world", "hide_groups", "hide_gcp", "hide_owid", "hide_regular",
               "year_min_input", "year_max_input", "countries", "country_search"]


def keep_widget_state():
    # Streamlit drops widget state when a page does not render the widget;
    # re-assigning the keys on every page keeps the sidebar choices alive.
    for k in WIDGET_KEYS:
        if k in st.session_state:
            st.session_state[k] = st.session_state[k]


@st.cache_data(show_spinner=False, hash_funcs=HASH_FUNCS)
def picker_options(df: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig) -> list:
    return selectable_entities(df, columns, filters.without_allowlist())


def search_options(options, query) -> list:
    # "Select all" takes only what the search box currently shows
    q = (query or "").strip().lower()
    return [o for o in options if q in o.lower()] if q else list(options)


@st.cache_data(show_spinner="Computing…", hash_funcs=HASH_FUNCS)
def dashboard_views(df: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig, unit: str,
                    year_min, year_max) -> dict:
    logger.debug("Recomputing views: unit=%s range=%s-%s filters=%s", unit, year_min, year_max, filters)
    years = available_years(df, columns)
    series = compute_global_series(df, columns, unit)
    year = display_year(years, year_max)
    top = compute_top_n(df, columns, filters, unit, year, n=TOP_N, series=series)
    return {
        "years": years,
        "year": year,
        "series": series,
        "visible_series": visible_series(series, year_min, year_max),
        "summary": compute_summary(series),
        "local": compute_local_extremes(series, year_min, year_max),
        "top": top,
        "ring": top_share_ring(top["entries"], top["world_total"], k=TOP_N),
        "changes": classify_changes(df, columns, filters, unit, year),
        "peaks": compute_peaks(df, columns, filters, unit, top_k=PEAKS_TOP_K),
    }


@st.cache_data(show_spinner=False, hash_funcs=HASH_FUNCS)
def map_slice(df: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig, unit: str, year: int) -> pd.DataFrame:
    """Visible entities with a 3-letter ISO code for one year, summed and scaled."""
    if not columns.code:
        return pd.DataFrame(columns=["entity", "iso3", "value", "category", "official_name"])
    div = unit_divisor(unit)
    sub = df[visible_mask(df, columns, filters)]
    d = pd.DataFrame({
        "entity": sub[columns.entity],
        "iso3": sub[columns.code].astype("string").str.strip().str.upper(),
        "year": numeric_years(sub, columns),
        "co2": numeric_co2(sub, columns),
    })
    iso_like = d["iso3"].str.fullmatch(r"[A-Z]{3}").fillna(False).astype(bool)
    d = d[(d["year"] == year) & iso_like]
    if d.empty:
        return pd.DataFrame(columns=["entity", "iso3", "value", "category", "official_name"])
    g = d.groupby(["iso3", "entity"], sort=False)["co2"].sum().reset_index()
    g["value"] = g["co2"] / div
    cats = entity_categories(df, columns)[["entity", "category"]]
    g = g.merge(cats, on="entity", how="left")
    g["category"] = g["category"].map(CATEGORY_LABELS)
    g["official_name"] = [iso_country_name(c) or n for n, c in zip(g["entity"], g["iso3"])]
    return g[["entity", "iso3", "value", "category", "official_name"]]


@st.cache_data(show_spinner=False, hash_funcs=HASH_FUNCS)
def history_of(df: pd.DataFrame, columns: ColumnSpec, entity: str, unit: str) -> pd.DataFrame:
    return entity_history(df, columns, entity, unit)
