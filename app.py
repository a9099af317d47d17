# app.py
import pandas as pd
import streamlit as st
import altair as alt
import plotly.io as pio
import plotly.graph_objects as go

from aggregation import available_years
from entities import FilterConfig
from logging_config import setup_logging
from utils import (
    DEFAULT_CSV, DEFAULT_UNIT, LIST_LIMIT, LOGGING_CONFIG, PEAKS_TOP_K, TOP_N, UNITS,
    SchemaError, clamp_year_max, clamp_year_min, format_pct, format_value,
    load_rows_from_bytes, resolve_columns, truncate,
)
from views import dashboard_views, keep_widget_state, picker_options, search_options

# =========================================================
# Page / theme
# =========================================================
st.set_page_config(page_title="Global CO₂ Emissions — Dashboard", page_icon="🌍", layout="wide")
pio.templates.default = "plotly_white"

C_PRIMARY = "#2E7D32"    # top-N bars / peak point
C_SECONDARY = "#1E88E5"  # global series / falling
C_ACCENT = "#FFC107"     # valley point / rising
C_NEUTRAL = "#546E7A"    # unchanged / rest of world


@st.cache_resource
def init_logging():
    return setup_logging(LOGGING_CONFIG)


logger = init_logging()
keep_widget_state()

# =========================================================
# Sidebar: load emissions table
# =========================================================
st.sidebar.header("📥 Data")
up_csv = st.sidebar.file_uploader(f"Upload {DEFAULT_CSV} (optional)", type=["csv"])

try:
    df = load_rows_from_bytes(up_csv.getvalue() if up_csv else None)
except FileNotFoundError:
    logger.warning("Default CSV %s not found and nothing uploaded", DEFAULT_CSV)
    st.error(f"`{DEFAULT_CSV}` not found in the working directory. Upload a CSV in the sidebar.")
    st.stop()
except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
    logger.exception("Could not parse emissions CSV")
    st.error(f"Could not parse the CSV: {e}")
    st.stop()

try:
    columns = resolve_columns(df.columns)
except SchemaError as e:
    logger.warning("Schema resolution failed: %s", e)
    st.error(f"Invalid schema — {e}")
    st.stop()

years = available_years(df, columns)
if df.empty or not years:
    st.error("The table is empty or has no usable year values.")
    st.stop()

# New table → reset the year range and the country selection
signature = (len(df), tuple(df.columns), years[0], years[-1])
if st.session_state.get("co2_signature") != signature:
    st.session_state.update({
        "co2_signature": signature,
        "year_min": years[0], "year_max": years[-1],
        "year_min_input": str(years[0]), "year_max_input": str(years[-1]),
        "countries": [],
    })

st.session_state["df_co2"] = df
st.session_state["co2_columns"] = columns
st.session_state["co2_years"] = years


# =========================================================
# Sidebar: controls
# =========================================================
def commit_year_min():
    v = clamp_year_min(st.session_state["year_min_input"], st.session_state["co2_years"], st.session_state["year_max"])
    st.session_state["year_min"] = v
    st.session_state["year_min_input"] = str(v)


def commit_year_max():
    v = clamp_year_max(st.session_state["year_max_input"], st.session_state["co2_years"], st.session_state["year_min"])
    st.session_state["year_max"] = v
    st.session_state["year_max_input"] = str(v)


def select_all_countries(options):
    st.session_state["countries"] = list(options)


def clear_countries():
    st.session_state["countries"] = []


with st.sidebar:
    st.markdown("---")
    if "unit" not in st.session_state:
        st.session_state["unit"] = DEFAULT_UNIT
    unit = st.radio("Unit", UNITS, horizontal=True, key="unit")

    c1, c2 = st.columns(2)
    with c1:
        st.text_input("From year", key="year_min_input", on_change=commit_year_min)
    with c2:
        st.text_input("To year", key="year_max_input", on_change=commit_year_max)
    st.caption(f"Data covers {years[0]}–{years[-1]}.")

    st.subheader("Aggregates")
    hide_world = st.checkbox("Hide World", key="hide_world")
    hide_groups = st.checkbox("Hide groups without ISO code (regions, income groups)", key="hide_groups")
    hide_gcp = st.checkbox("Hide GCP groups", key="hide_gcp")
    hide_owid = st.checkbox("Hide OWID_* aggregates", key="hide_owid")
    hide_regular = st.checkbox("Hide regular countries (with code)", key="hide_regular")

    base_filters = FilterConfig(hide_world, hide_groups, hide_gcp, hide_owid, hide_regular)
    options = picker_options(df, columns, base_filters)
    allowed = set(options)
    st.session_state["countries"] = [c for c in st.session_state.get("countries", []) if c in allowed]

    st.subheader("Countries")
    query = st.text_input("Search", key="country_search", placeholder="Filter the list…")
    matches = search_options(options, query)
    b1, b2 = st.columns(2)
    b1.button(f"Select all ({len(matches)})", on_click=select_all_countries, args=(matches,), use_container_width=True)
    b2.button("Clear", on_click=clear_countries, use_container_width=True)
    picked = st.multiselect("Countries (empty = all)", options, key="countries")
    st.caption(f"Selected: {len(picked)} (empty = all)")

filters = FilterConfig(hide_world, hide_groups, hide_gcp, hide_owid, hide_regular, frozenset(picked))
year_min, year_max = st.session_state["year_min"], st.session_state["year_max"]
st.session_state["co2_filters"] = filters
st.session_state["co2_unit"] = unit

views = dashboard_views(df, columns, filters, unit, year_min, year_max)

# =========================================================
# Layout
# =========================================================
st.title("🌍 Global CO₂ Emissions")
st.caption("World totals use every row of the table; rankings, changes and peaks follow the sidebar filters.")

col_a, col_b = st.columns(2)

# ---------- Column A: KPIs + global series, rising vs falling ----------
with col_a:
    summary = views["summary"]
    st.subheader("Main KPIs")
    if summary:
        k1, k2, k3 = st.columns(3)
        with k1:
            st.metric(f"Global emissions ({summary['last']['year']})",
                      format_value(summary["last"]["value"], unit),
                      f"{format_pct(summary['yoy_pct'])} YoY")
        with k2:
            st.metric("Global peak", format_value(summary["peak"]["value"], unit), f"Year {summary['peak']['year']}",
                      delta_color="off")
        with k3:
            st.metric("Global valley", format_value(summary["valley"]["value"], unit),
                      f"Year {summary['valley']['year']}", delta_color="off")

    vs = views["visible_series"]
    local = views["local"]
    if vs.empty:
        st.info("No global series to plot.")
    else:
        line = alt.Chart(vs).mark_line(color=C_SECONDARY, strokeWidth=2).encode(
            x=alt.X("year:Q", title="Year", axis=alt.Axis(format="d")),
            y=alt.Y("value:Q", title=f"Global CO₂ ({unit})"),
            tooltip=[alt.Tooltip("year:Q", format="d", title="Year"), alt.Tooltip("value:Q", format=".2f", title=unit)],
        )
        layers = [line]
        if local["peak"] and local["valley"]:
            marks = pd.DataFrame([
                {**local["peak"], "kind": "Peak"},
                {**local["valley"], "kind": "Valley"},
            ])
            marks["label"] = [f"{k} {y} ({v:.2f} {unit})" for k, y, v in zip(marks["kind"], marks["year"], marks["value"])]
            pts = alt.Chart(marks).mark_point(filled=True, size=90, stroke="white").encode(
                x="year:Q", y="value:Q",
                color=alt.Color("kind:N", title="", scale=alt.Scale(domain=["Peak", "Valley"], range=[C_PRIMARY, C_ACCENT])),
            )
            txt = alt.Chart(marks).mark_text(dy=-12, fontSize=11).encode(x="year:Q", y="value:Q", text="label:N")
            layers += [pts, txt]
        st.altair_chart(alt.layer(*layers).properties(height=320), use_container_width=True)

    st.markdown("---")
    ch = views["changes"]
    st.subheader(f"Rising vs falling ({ch['year'] if ch['year'] is not None else '—'})")
    counts = pd.DataFrame({
        "name": ["Rising", "Falling", "Unchanged"],
        "value": [ch["rising_count"], ch["falling_count"], ch["unchanged_count"]],
    })
    bars = alt.Chart(counts).mark_bar().encode(
        x=alt.X("name:N", title="", sort=["Rising", "Falling", "Unchanged"]),
        y=alt.Y("value:Q", title="Entities"),
        color=alt.Color("name:N", legend=None,
                        scale=alt.Scale(domain=["Rising", "Falling", "Unchanged"], range=[C_ACCENT, C_SECONDARY, C_NEUTRAL])),
        tooltip=["name:N", "value:Q"],
    )
    labels = bars.mark_text(dy=-8).encode(text="value:Q")
    st.altair_chart((bars + labels).properties(height=220), use_container_width=True)

    l1, l2, l3 = st.columns(3)
    for box, title, key in [(l1, f"↑ Rising (top {LIST_LIMIT})", "rising"), (l2, f"↓ Falling (top {LIST_LIMIT})", "falling")]:
        with box:
            st.caption(title)
            lst = ch[key].head(LIST_LIMIT)
            if lst.empty:
                st.write("—")
            else:
                st.dataframe(
                    pd.DataFrame({
                        "Entity": lst["entity"].map(truncate),
                        f"Δ {unit}": lst["delta_abs"].map(lambda v: f"{v:+.3f}"),
                        "Δ %": lst["delta_pct"].map(format_pct),
                    }),
                    hide_index=True, use_container_width=True,
                )
    with l3:
        st.caption("= Unchanged")
        same = ch["unchanged"].head(LIST_LIMIT)
        if same.empty:
            st.write("—")
        else:
            st.dataframe(same.rename(columns={"entity": "Entity"}), hide_index=True, use_container_width=True)

# ---------- Column B: top-N + ring, historical peaks ----------
with col_b:
    top = views["top"]
    st.subheader(f"Top {TOP_N} ({top['year'] if top['year'] is not None else '—'})")
    entries = top["entries"]
    if entries.empty:
        st.info("No entity passes the current filters for this year.")
    else:
        tb = alt.Chart(entries).mark_bar(color=C_PRIMARY, size=16).encode(
            x=alt.X("value:Q", title=f"{unit} CO₂"),
            y=alt.Y("entity:N", title="", sort="-x", axis=alt.Axis(labelLimit=160)),
            tooltip=["entity:N", alt.Tooltip("value:Q", format=".2f", title=unit)],
        )
        tl = tb.mark_text(align="left", dx=4).encode(text=alt.Text("value:Q", format=".2f"))
        st.altair_chart((tb + tl).properties(height=300), use_container_width=True)

    ring = views["ring"]
    if ring["top"] + ring["rest"] > 0:
        pie = go.Figure(go.Pie(
            labels=[f"Top {TOP_N}", "Rest"],
            values=[ring["top"], ring["rest"]],
            hole=0.55, sort=False, textinfo="percent",
            marker=dict(colors=[C_PRIMARY, "#263238"]),
            hovertemplate=f"%{{label}}: %{{value:.2f}} {unit}<extra></extra>",
        ))
        pie.update_layout(margin=dict(l=0, r=0, t=8, b=0), height=200, showlegend=True)
        st.plotly_chart(pie, use_container_width=True)
    st.caption(f"World: {format_value(top['world_total'], unit) if top['world_total'] else '—'}")

    st.markdown("---")
    st.subheader(f"Historical peak per entity (top {PEAKS_TOP_K})")
    peaks = views["peaks"]
    if peaks.empty:
        st.info("No rows pass the current filters.")
    else:
        peaks = peaks.assign(year_label=peaks["year"].map(lambda y: f"({y})"))
        pb = alt.Chart(peaks).mark_bar(color=C_SECONDARY).encode(
            x=alt.X("value:Q", title=f"{unit} CO₂"),
            y=alt.Y("entity:N", title="", sort="-x", axis=alt.Axis(labelLimit=160)),
            tooltip=["entity:N", alt.Tooltip("year:Q", format="d"), alt.Tooltip("value:Q", format=".2f", title=unit)],
        )
        pl = pb.mark_text(align="left", dx=6, color="#607D8B").encode(text="year_label:N")
        st.altair_chart((pb + pl).properties(height=400), use_container_width=True)

# =========================================================
# Downloads
# =========================================================
with st.expander("⬇️ Download current views"):
    d1, d2, d3 = st.columns(3)
    with d1:
        st.download_button(
            "Global series (CSV)",
            data=views["series"].to_csv(index=False).encode("utf-8"),
            file_name=f"global_co2_{unit}.csv", mime="text/csv",
        )
    with d2:
        st.download_button(
            f"Top {TOP_N} (CSV)",
            data=entries.to_csv(index=False).encode("utf-8"),
            file_name=f"top{TOP_N}_{top['year']}_{unit}.csv", mime="text/csv",
        )
    with d3:
        st.download_button(
            "Historical peaks (CSV)",
            data=views["peaks"].to_csv(index=False).encode("utf-8"),
            file_name=f"peaks_top{PEAKS_TOP_K}_{unit}.csv", mime="text/csv",
        )

with st.expander("ℹ️ Notes"):
    st.markdown("""
- **World totals** (KPIs, line chart, ring) sum every row of the table, filters aside.
- The **ranking year** is the upper bound of the year range, pulled down to the last year in the data.
- **Rising/falling** compares that year with the previous one; an entity missing in one of them counts as 0.
- Hiding both *groups without code* and *regular countries* leaves nothing to show; that is allowed.
""")
