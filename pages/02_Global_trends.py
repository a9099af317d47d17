# pages/02_Global_trends.py
import streamlit as st
import altair as alt

from aggregation import clamp_series, yoy_series
from utils import format_pct, format_value
from views import dashboard_views, keep_widget_state

keep_widget_state()
st.title("📈 Global trends")

if "df_co2" not in st.session_state:
    st.error("No emissions table loaded. Go to Home and upload or use the default CSV.")
    st.stop()

df = st.session_state["df_co2"]
columns = st.session_state["co2_columns"]
filters = st.session_state["co2_filters"]
unit = st.session_state["co2_unit"]
year_min, year_max = st.session_state["year_min"], st.session_state["year_max"]

views = dashboard_views(df, columns, filters, unit, year_min, year_max)
series = views["series"]
clamped = clamp_series(series, year_min, year_max)
yoy = clamp_series(yoy_series(series).rename(columns={"yoy_pct": "value"}), year_min, year_max)

st.caption(f"Year range {year_min}–{year_max} · unit {unit} · world totals ignore the sidebar filters.")

st.subheader("Global emissions")
if clamped.empty:
    st.info("No global values inside the selected year range.")
else:
    area = alt.Chart(clamped).mark_area(opacity=0.6, color="#1E88E5").encode(
        x=alt.X("year:Q", title="Year", axis=alt.Axis(format="d")),
        y=alt.Y("value:Q", title=f"CO₂ ({unit})"),
        tooltip=[alt.Tooltip("year:Q", format="d"), alt.Tooltip("value:Q", format=".2f", title=unit)],
    ).properties(height=320)
    st.altair_chart(area, use_container_width=True)
    local = views["local"]
    if local["peak"]:
        st.caption(
            f"Peak in range: {format_value(local['peak']['value'], unit)} ({local['peak']['year']}) · "
            f"valley: {format_value(local['valley']['value'], unit)} ({local['valley']['year']})"
        )

st.subheader("Year-over-year change (global)")
if yoy.empty:
    st.info("At least two years are needed for a year-over-year view.")
else:
    yoy = yoy.assign(direction=yoy["value"].map(lambda v: "Up" if v > 0 else ("Down" if v < 0 else "Flat")))
    bars = alt.Chart(yoy).mark_bar().encode(
        x=alt.X("year:O", title="Year"),
        y=alt.Y("value:Q", title="YoY %"),
        color=alt.Color("direction:N", title="", scale=alt.Scale(domain=["Up", "Down", "Flat"],
                                                                   range=["#FFC107", "#1E88E5", "#546E7A"])),
        tooltip=[alt.Tooltip("year:O"), alt.Tooltip("value:Q", format=".2f", title="YoY %")],
    ).properties(height=260)
    st.altair_chart(bars, use_container_width=True)

# Full change lists for the ranking year
ch = views["changes"]
st.markdown("---")
st.subheader(f"All changes {ch['year'] - 1 if ch['year'] else '—'} → {ch['year'] or '—'} (filtered)")
c1, c2, c3 = st.columns(3)
for box, title, key in [(c1, f"↑ Rising ({ch['rising_count']})", "rising"),
                        (c2, f"↓ Falling ({ch['falling_count']})", "falling"),
                        (c3, f"= Unchanged ({ch['unchanged_count']})", "unchanged")]:
    with box:
        st.caption(title)
        tbl = ch[key]
        if "delta_pct" in tbl.columns:
            tbl = tbl.assign(delta_pct=tbl["delta_pct"].map(format_pct))
        st.dataframe(tbl, hide_index=True, use_container_width=True)

# Optional downloads
st.markdown("---")
d1, d2, d3 = st.columns(3)
with d1:
    st.download_button(
        "Download global series (CSV)",
        data=series.to_csv(index=False).encode("utf-8"),
        file_name=f"global_co2_timeseries_{unit}.csv",
        mime="text/csv"
    )
with d2:
    if not ch["rising"].empty:
        st.download_button(
            "Download rising list (CSV)",
            data=ch["rising"].to_csv(index=False).encode("utf-8"),
            file_name=f"rising_{ch['year']}_{unit}.csv",
            mime="text/csv"
        )
with d3:
    if not ch["falling"].empty:
        st.download_button(
            "Download falling list (CSV)",
            data=ch["falling"].to_csv(index=False).encode("utf-8"),
            file_name=f"falling_{ch['year']}_{unit}.csv",
            mime="text/csv"
        )
