# utils.py
import io, re
import logging
import unicodedata
from dataclasses import dataclass
from typing import Iterable, List, Optional

import pandas as pd
import pycountry
import streamlit as st

logger = logging.getLogger(__name__)

# =========================
# Constants
# =========================
DEFAULT_CSV = "annual-co2-emissions-per-country.csv"  # default demo path
LOGGING_CONFIG = "logging.yml"

UNITS = ["Gt", "Mt"]
DEFAULT_UNIT = "Gt"
TOP_N = 5          # ranking size (fixed)
PEAKS_TOP_K = 15   # historical peaks shown
LIST_LIMIT = 10    # rows per rising/falling/unchanged list

# Header candidates, matched as substrings of the normalised header name
COLUMN_CANDIDATES = {
    "entity": ["entity", "country", "pais", "name"],
    "code":   ["code", "iso"],
    "year":   ["year", "anio", "ano", "año"],
    "co2":    ["co2", "co 2", "emision", "emisiones", "emission"],
}
REQUIRED_FIELDS = ["entity", "year", "co2"]

# Names pycountry does not resolve by alpha-3 (OWID uses its own codes)
CODE_OVERRIDES = {
    "OWID_WRL": "World",
    "OWID_KOS": "Kosovo",
}


class SchemaError(ValueError):
    """Raised when a required column cannot be identified in the CSV header."""


@dataclass(frozen=True)
class ColumnSpec:
    entity: str
    year: str
    co2: str
    code: Optional[str] = None

    def cache_key(self) -> tuple:
        return (self.entity, self.code, self.year, self.co2)


# =========================
# Helpers
# =========================
def normalize_header(name) -> str:
    s = unicodedata.normalize("NFKD", "" if name is None else str(name))
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return s.replace("₂", "2").lower().strip()


def pick_column(headers: List[str], needles: List[str]) -> Optional[str]:
    # first header (in header order) containing any of the needles
    normed = [normalize_header(h) for h in headers]
    needles = [normalize_header(n) for n in needles]
    for raw, key in zip(headers, normed):
        if any(n in key for n in needles):
            return raw
    return None


def resolve_columns(headers: Iterable) -> ColumnSpec:
    headers = [str(h) for h in headers]
    found = {field: pick_column(headers, needles) for field, needles in COLUMN_CANDIDATES.items()}
    missing = [f for f in REQUIRED_FIELDS if not found[f]]
    if missing:
        raise SchemaError(f"Could not identify column(s) {missing} in CSV header. Got: {headers}")
    cols = ColumnSpec(entity=found["entity"], year=found["year"], co2=found["co2"], code=found["code"])
    logger.info("Resolved columns: %s", cols)
    return cols


@st.cache_data(show_spinner=False)
def load_rows_from_bytes(upload: bytes | None, path: str = DEFAULT_CSV) -> pd.DataFrame:
    df = pd.read_csv(io.BytesIO(upload)) if upload else pd.read_csv(path)
    df.columns = [str(c).strip() for c in df.columns]
    logger.info("Loaded %d rows x %d columns from %s", len(df), len(df.columns), "upload" if upload else path)
    return df


def parse_leading_int(raw) -> Optional[int]:
    m = re.match(r"\s*([+-]?\d+)", "" if raw is None else str(raw))
    return int(m.group(1)) if m else None


def clamp_year_min(raw, years: List[int], year_max: Optional[int]) -> Optional[int]:
    """Commit a typed lower bound: parse, default to the first year, keep it within [first, year_max]."""
    if not years:
        return None
    base = years[0]
    val = parse_leading_int(raw)
    if val is None:
        val = base
    upper = years[-1] if year_max is None else year_max
    return max(base, min(val, upper))


def clamp_year_max(raw, years: List[int], year_min: Optional[int]) -> Optional[int]:
    """Commit a typed upper bound: parse, default to the last year, keep it within [year_min, last]."""
    if not years:
        return None
    base = years[-1]
    val = parse_leading_int(raw)
    if val is None:
        val = base
    lower = years[0] if year_min is None else year_min
    return min(base, max(val, lower))


def iso_country_name(code) -> Optional[str]:
    if not isinstance(code, str) or not code.strip():
        return None
    code = code.strip().upper()
    if code in CODE_OVERRIDES:
        return CODE_OVERRIDES[code]
    rec = pycountry.countries.get(alpha_3=code) if len(code) == 3 else None
    if rec is None:
        return None
    return getattr(rec, "official_name", None) or rec.name


def format_value(v, unit: str, digits: int = 2) -> str:
    if v is None or pd.isna(v):
        return "—"
    return f"{float(v):.{digits}f} {unit}"


def format_pct(v, digits: int = 2) -> str:
    if v is None or pd.isna(v):
        return "—"
    return f"{'+' if v >= 0 else ''}{float(v):.{digits}f}%"


def truncate(s, n: int = 28) -> str:
    s = str(s)
    return s[: n - 1] + "…" if len(s) > n else s
