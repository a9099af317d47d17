# pages/01_Country_Map.py
import pandas as pd
import streamlit as st
import altair as alt
import plotly.graph_objects as go
from streamlit_plotly_events import plotly_events

from aggregation import display_year
from utils import format_value, iso_country_name
from views import history_of, keep_widget_state, map_slice

keep_widget_state()
st.title("🗺️ Country Map")

# ---- get data ----
if "df_co2" not in st.session_state:
    st.error("No emissions table loaded. Go to Home and upload or use the default CSV.")
    st.stop()

df = st.session_state["df_co2"]
columns = st.session_state["co2_columns"]
years = st.session_state["co2_years"]
filters = st.session_state["co2_filters"]
unit = st.session_state["co2_unit"]

if not columns.code:
    st.error("The table has no ISO code column, so entities cannot be placed on a map.")
    st.stop()

default_year = display_year(years, st.session_state.get("year_max"))
with st.sidebar:
    st.markdown("---")
    if len(years) > 1:
        map_year = st.slider("Map year", min_value=years[0], max_value=years[-1], value=default_year)
    else:
        # st.slider rejects min == max
        map_year = years[0]
        st.caption(f"Map year: {map_year}")

# ---- build year slice for map ----
dy = map_slice(df, columns, filters, unit, map_year)
st.info(
    f"Map-year diagnostic — entities with a 3-letter code after filters: {len(dy)} | "
    f"total shown: {format_value(dy['value'].sum() if not dy.empty else None, unit)}"
)

if dy.empty:
    st.error("No coded entity passes the current filters for this year.")
    st.stop()

# ---- choropleth (clickable) ----
fig = go.Figure(
    data=go.Choropleth(
        locations=dy["iso3"].tolist(),
        z=dy["value"].astype(float).tolist(),
        locationmode="ISO-3",
        colorscale="YlOrRd",
        colorbar_title=f"CO₂ ({unit})",
        marker_line_color="white",
        marker_line_width=0.3,
        hovertext=dy["entity"],
        hovertemplate=f"<b>%{{hovertext}}</b><br>CO₂: %{{z:.3f}} {unit}<extra></extra>",
    )
)
fig.update_layout(
    margin=dict(l=0, r=0, t=8, b=0),
    geo=dict(showframe=False, showcoastlines=True, projection_type="equirectangular"),
)
clicked = plotly_events(fig, click_event=True, hover_event=False, select_event=False,
                        override_height=520, override_width="100%")

# ---- resolve selected entity (fallback selector) ----
selected = None
if clicked:
    idx = clicked[0].get("pointNumber", None)
    if isinstance(idx, int) and 0 <= idx < len(dy):
        selected = dy.iloc[idx]["entity"]

if selected is None:
    st.caption("Click a country on the map, or choose one below.")
    ranked = dy.sort_values("value", ascending=False)["entity"].tolist()
    selected = st.selectbox("Entity", ranked)

sel = dy[dy["entity"] == selected].head(1)
code = sel["iso3"].iloc[0]
official = iso_country_name(code)

# ---- scorecards ----
st.markdown(f"## {selected} — {map_year}")
k1, k2, k3 = st.columns(3)
with k1: st.metric(f"Emissions ({unit})", format_value(sel["value"].iloc[0], unit, digits=3))
with k2:
    share = float(sel["value"].iloc[0]) / float(dy["value"].sum()) * 100 if dy["value"].sum() else 0.0
    st.metric("Share of mapped total", f"{share:.1f}%")
with k3: st.metric("Category", sel["category"].iloc[0])
if official and official != selected:
    st.caption(f"ISO {code} — {official}")

st.markdown("---")

# ---- history ----
hist = history_of(df, columns, selected, unit)
st.subheader("📈 Emissions history (all years, unfiltered)")
if hist.empty:
    st.info("No yearly values for this entity.")
else:
    peak = hist.loc[hist["value"].idxmax()]
    line = alt.Chart(hist).mark_line(point=True).encode(
        x=alt.X("year:Q", title="Year", axis=alt.Axis(format="d")),
        y=alt.Y("value:Q", title=f"CO₂ ({unit})"),
        tooltip=[alt.Tooltip("year:Q", format="d"), alt.Tooltip("value:Q", format=".3f")],
    )
    peak_pt = alt.Chart(pd.DataFrame([peak])).mark_point(filled=True, size=120, color="#2E7D32").encode(
        x="year:Q", y="value:Q"
    )
    st.altair_chart((line + peak_pt).properties(height=300), use_container_width=True)
    st.caption(f"Peak: {format_value(peak['value'], unit, digits=3)} in {int(peak['year'])}")

# ---- download current map slice ----
with st.expander("⬇️ Download current map slice"):
    dl = dy.rename(columns={"value": f"co2_{unit}"})
    st.dataframe(dl.sort_values(f"co2_{unit}", ascending=False), use_container_width=True)
    st.download_button(
        "Download CSV",
        data=dl.to_csv(index=False).encode("utf-8"),
        file_name=f"map_slice_{map_year}_{unit}.csv",
        mime="text/csv"
    )
