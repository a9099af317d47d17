# entities.py
"""
Entity classification and the row visibility filter.

An entity is a country, a code-less group (regions, income brackets), a
GCP-tagged group, an OWID aggregate or "World". The hide flags are applied
independently: a row is dropped as soon as any rule with its flag set matches.
The country allowlist is applied after the category rules.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Mapping

import pandas as pd

from utils import ColumnSpec

logger = logging.getLogger(__name__)

WORLD_NAME = "world"
GCP_TAG = "(gcp)"
OWID_PREFIX = "OWID"

CATEGORY_LABELS = {
    "world": "World",
    "gcp": "GCP group",
    "owid": "OWID aggregate",
    "group": "Group / region (no code)",
    "country": "Country",
}


@dataclass(frozen=True)
class FilterConfig:
    hide_world: bool = False
    hide_groups: bool = False    # groups without an ISO code
    hide_gcp: bool = False
    hide_owid: bool = False
    hide_regular: bool = False   # coded, "normal" countries
    countries: FrozenSet[str] = field(default_factory=frozenset)

    def cache_key(self) -> tuple:
        return (self.hide_world, self.hide_groups, self.hide_gcp, self.hide_owid,
                self.hide_regular, tuple(sorted(self.countries)))

    def without_allowlist(self) -> "FilterConfig":
        return FilterConfig(self.hide_world, self.hide_groups, self.hide_gcp,
                            self.hide_owid, self.hide_regular)


def has_code(value) -> bool:
    if value is None:
        return False
    try:
        if pd.isna(value):
            return False
    except (TypeError, ValueError):
        pass
    return str(value).strip() != ""


def classify_entity(name, code) -> str:
    name = "" if name is None else str(name)
    if name.lower() == WORLD_NAME:
        return "world"
    if GCP_TAG in name.lower():
        return "gcp"
    if isinstance(code, str) and code.startswith(OWID_PREFIX):
        return "owid"
    return "country" if has_code(code) else "group"


def is_visible(row: Mapping, columns: ColumnSpec, filters: FilterConfig, apply_allowlist: bool = True) -> bool:
    raw_name = row.get(columns.entity)
    name = "" if raw_name is None or (isinstance(raw_name, float) and pd.isna(raw_name)) else str(raw_name)
    code = row.get(columns.code) if columns.code else None
    coded = has_code(code)

    if filters.hide_world and name.lower() == WORLD_NAME:
        return False
    if filters.hide_groups and not coded:
        return False
    if filters.hide_gcp and GCP_TAG in name.lower():
        return False
    if filters.hide_owid and isinstance(code, str) and code.startswith(OWID_PREFIX):
        return False
    if filters.hide_regular and coded:
        return False

    if not apply_allowlist or not filters.countries:
        return True
    return name in filters.countries


def visible_mask(frame: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig,
                 apply_allowlist: bool = True) -> pd.Series:
    """Vectorised `is_visible` over a whole frame."""
    names = frame[columns.entity].fillna("").astype(str)
    lower = names.str.lower()
    if columns.code and columns.code in frame.columns:
        code = frame[columns.code]
    else:
        code = pd.Series(None, index=frame.index, dtype="object")
    coded = code.notna() & code.fillna("").astype(str).str.strip().ne("")
    owid = code.map(lambda c: isinstance(c, str) and c.startswith(OWID_PREFIX)).astype(bool)

    mask = pd.Series(True, index=frame.index)
    if filters.hide_world:
        mask &= lower.ne(WORLD_NAME)
    if filters.hide_groups:
        mask &= coded
    if filters.hide_gcp:
        mask &= ~lower.str.contains(GCP_TAG, regex=False)
    if filters.hide_owid:
        mask &= ~owid
    if filters.hide_regular:
        mask &= ~coded
    if filters.hide_groups and filters.hide_regular:
        logger.debug("hide_groups and hide_regular both set: no row can be visible")

    if apply_allowlist and filters.countries:
        mask &= names.isin(filters.countries)
    return mask


def selectable_entities(frame: pd.DataFrame, columns: ColumnSpec, filters: FilterConfig) -> List[str]:
    # country picker options: category rules only, the allowlist itself is ignored
    mask = visible_mask(frame, columns, filters, apply_allowlist=False)
    names = frame.loc[mask, columns.entity].dropna().astype(str)
    return sorted(n for n in names.unique() if n)


def entity_categories(frame: pd.DataFrame, columns: ColumnSpec) -> pd.DataFrame:
    code = frame[columns.code] if columns.code and columns.code in frame.columns else pd.Series(None, index=frame.index)
    out = pd.DataFrame({"entity": frame[columns.entity], "code": code})
    out = out.dropna(subset=["entity"]).drop_duplicates("entity")
    out["category"] = [classify_entity(n, c) for n, c in zip(out["entity"], out["code"])]
    return out.reset_index(drop=True)
