import unittest

import numpy as np
import pandas as pd

from aggregation import (
    classify_changes, clamp_series, compute_global_series, compute_local_extremes,
    compute_peaks, compute_summary, compute_top_n, display_year, entity_history,
    top_share_ring, unit_divisor, visible_series, yoy_series,
)
from entities import FilterConfig
from utils import ColumnSpec

COLUMNS = ColumnSpec(entity="Entity", code="Code", year="Year", co2="Annual CO₂ emissions")
NO_FILTER = FilterConfig()


def make_frame(rows):
    """rows: (entity, code, year, co2) tuples, in scan order."""
    return pd.DataFrame(rows, columns=["Entity", "Code", "Year", "Annual CO₂ emissions"])


def series_of(pairs):
    return pd.DataFrame({"year": [p[0] for p in pairs], "value": [float(p[1]) for p in pairs]})


class TestGlobalSeries(unittest.TestCase):
    """World totals per year (no filters)."""

    def _world_frame(self):
        return make_frame([
            ("World", "OWID_WRL", 2020, 3.4e10),
            ("World", "OWID_WRL", 2021, 3.6e10),
        ])

    def test_world_scenario_in_gt(self):
        series = compute_global_series(self._world_frame(), COLUMNS, "Gt")
        self.assertEqual(series["year"].tolist(), [2020, 2021])
        self.assertAlmostEqual(series["value"].iloc[0], 34.0)
        self.assertAlmostEqual(series["value"].iloc[1], 36.0)

    def test_world_scenario_yoy(self):
        summary = compute_summary(compute_global_series(self._world_frame(), COLUMNS, "Gt"))
        self.assertAlmostEqual(summary["yoy_pct"], 2 / 34 * 100, places=6)
        self.assertAlmostEqual(round(summary["yoy_pct"], 2), 5.88)

    def test_sums_all_entities_per_year_sorted(self):
        df = make_frame([
            ("B", "BBB", 2001, 2e9),
            ("A", "AAA", 2000, 1e9),
            ("Africa", None, 2001, 3e9),
            ("A", "AAA", 2001, 1e9),
        ])
        series = compute_global_series(df, COLUMNS, "Gt")
        self.assertEqual(series["year"].tolist(), [2000, 2001])
        self.assertEqual(series["value"].tolist(), [1.0, 6.0])

    def test_order_independent(self):
        rng = np.random.default_rng(7)
        rows = [(f"E{i % 9}", "ABC", 1990 + i % 13, float(rng.integers(0, 10**9))) for i in range(200)]
        df = make_frame(rows)
        shuffled = df.sample(frac=1, random_state=3).reset_index(drop=True)
        a = compute_global_series(df, COLUMNS, "Mt")
        b = compute_global_series(shuffled, COLUMNS, "Mt")
        pd.testing.assert_frame_equal(a, b, check_exact=False)

    def test_bad_years_skipped_bad_co2_zero(self):
        df = make_frame([
            ("A", "AAA", 2000, 1e9),
            ("A", "AAA", "n/a", 5e9),
            ("A", "AAA", None, 5e9),
            ("A", "AAA", 2000.5, 5e9),
            ("B", "BBB", 2000, "oops"),
        ])
        series = compute_global_series(df, COLUMNS, "Gt")
        self.assertEqual(series["year"].tolist(), [2000])
        self.assertAlmostEqual(series["value"].iloc[0], 1.0)

    def test_empty_frame(self):
        series = compute_global_series(make_frame([]), COLUMNS, "Gt")
        self.assertTrue(series.empty)
        self.assertIsNone(compute_summary(series))

    def test_mt_is_thousand_times_gt(self):
        df = make_frame([("A", "AAA", 2000, 1.234e9), ("B", None, 2000, 5.5e8), ("A", "AAA", 2001, 7e7)])
        gt = compute_global_series(df, COLUMNS, "Gt")
        mt = compute_global_series(df, COLUMNS, "Mt")
        for g, m in zip(gt["value"], mt["value"]):
            self.assertAlmostEqual(m, g * 1000)

    def test_unknown_unit(self):
        with self.assertRaises(ValueError):
            unit_divisor("kt")


class TestUnitScaling(unittest.TestCase):
    """Mt values are Gt values times 1000 in every derived view."""

    def setUp(self):
        self.df = make_frame([
            ("A", "AAA", 2019, 1.5e9), ("A", "AAA", 2020, 2.25e9),
            ("B", "BBB", 2019, 7e8), ("B", "BBB", 2020, 3e8),
            ("Africa", None, 2020, 1.1e9), ("C", "CCC", 2019, 4e7),
        ])

    def test_top_n(self):
        gt = compute_top_n(self.df, COLUMNS, NO_FILTER, "Gt", 2020)
        mt = compute_top_n(self.df, COLUMNS, NO_FILTER, "Mt", 2020)
        self.assertEqual(gt["entries"]["entity"].tolist(), mt["entries"]["entity"].tolist())
        for g, m in zip(gt["entries"]["value"], mt["entries"]["value"]):
            self.assertAlmostEqual(m, g * 1000)
        self.assertAlmostEqual(mt["world_total"], gt["world_total"] * 1000)

    def test_peaks(self):
        gt = compute_peaks(self.df, COLUMNS, NO_FILTER, "Gt")
        mt = compute_peaks(self.df, COLUMNS, NO_FILTER, "Mt")
        self.assertEqual(gt["entity"].tolist(), mt["entity"].tolist())
        self.assertEqual(gt["year"].tolist(), mt["year"].tolist())
        for g, m in zip(gt["value"], mt["value"]):
            self.assertAlmostEqual(m, g * 1000)

    def test_change_deltas(self):
        gt = classify_changes(self.df, COLUMNS, NO_FILTER, "Gt", 2020)
        mt = classify_changes(self.df, COLUMNS, NO_FILTER, "Mt", 2020)
        for key in ("rising", "falling"):
            self.assertEqual(gt[key]["entity"].tolist(), mt[key]["entity"].tolist())
            for g, m in zip(gt[key]["delta_abs"], mt[key]["delta_abs"]):
                self.assertAlmostEqual(m, g * 1000)
            for g, m in zip(gt[key]["delta_pct"], mt[key]["delta_pct"]):
                self.assertAlmostEqual(m, g)


class TestSummary(unittest.TestCase):

    def test_single_point_gets_synthetic_previous(self):
        summary = compute_summary(series_of([(2020, 5)]))
        self.assertEqual(summary["previous"], {"year": 2019, "value": 0.0})
        self.assertEqual(summary["yoy_pct"], 0.0)
        self.assertEqual(summary["last"], {"year": 2020, "value": 5.0})

    def test_zero_previous_gives_zero_yoy(self):
        summary = compute_summary(series_of([(2019, 0), (2020, 5)]))
        self.assertEqual(summary["yoy_pct"], 0.0)

    def test_peak_and_valley_first_wins_ties(self):
        summary = compute_summary(series_of([(2000, 1), (2001, 3), (2002, 3), (2003, 1), (2004, 2)]))
        self.assertEqual(summary["peak"], {"year": 2001, "value": 3.0})
        self.assertEqual(summary["valley"], {"year": 2000, "value": 1.0})

    def test_peak_uses_whole_series(self):
        s = series_of([(2000, 10), (2001, 3), (2002, 4)])
        self.assertEqual(compute_summary(s)["peak"]["year"], 2000)
        self.assertEqual(compute_local_extremes(s, 2001, 2002)["peak"]["year"], 2002)

    def test_yoy_series(self):
        yoy = yoy_series(series_of([(2000, 0), (2001, 2), (2002, 3)]))
        self.assertEqual(yoy["year"].tolist(), [2001, 2002])
        self.assertEqual(yoy["yoy_pct"].tolist(), [0.0, 50.0])
        self.assertTrue(yoy_series(series_of([(2000, 1)])).empty)


class TestClampedSeries(unittest.TestCase):

    def setUp(self):
        self.series = series_of([(2000, 5), (2001, 1), (2002, 9), (2003, 2)])

    def test_clamp(self):
        self.assertEqual(clamp_series(self.series, 2001, 2002)["year"].tolist(), [2001, 2002])

    def test_visible_falls_back_to_full_series(self):
        self.assertEqual(len(visible_series(self.series, 2010, 2020)), 4)

    def test_local_extremes_in_range(self):
        ext = compute_local_extremes(self.series, 2000, 2001)
        self.assertEqual(ext["peak"]["year"], 2000)
        self.assertEqual(ext["valley"]["year"], 2001)

    def test_local_extremes_empty_clamp_uses_full(self):
        ext = compute_local_extremes(self.series, 1900, 1950)
        self.assertEqual(ext["peak"]["year"], 2002)

    def test_local_extremes_empty_series(self):
        self.assertEqual(compute_local_extremes(series_of([])), {"peak": None, "valley": None})


class TestTopN(unittest.TestCase):

    def test_display_year_clamped_to_data(self):
        self.assertEqual(display_year([1999, 2000, 2021], 2050), 2021)
        self.assertEqual(display_year([1999, 2000, 2021], 2000), 2000)
        self.assertEqual(display_year([1999, 2021], None), 2021)
        self.assertIsNone(display_year([], 2000))

    def test_groups_hidden_scenario(self):
        df = make_frame([
            ("Andorra", "AND", 2021, 500000),
            ("Africa", None, 2021, 1.2e9),
        ])
        top = compute_top_n(df, COLUMNS, FilterConfig(hide_groups=True), "Gt", 2021)
        names = top["entries"]["entity"].tolist()
        self.assertIn("Andorra", names)
        self.assertNotIn("Africa", names)
        # world total ignores the filter
        self.assertAlmostEqual(top["world_total"], 1.2005)

    def test_sorted_truncated_and_summed(self):
        df = make_frame([
            ("A", "AAA", 2020, 1e9), ("B", "BBB", 2020, 5e9), ("C", "CCC", 2020, 3e9),
            ("A", "AAA", 2020, 6e9), ("D", "DDD", 2020, 2e9), ("E", "EEE", 2020, 4e9),
            ("F", "FFF", 2020, 0.5e9), ("B", "BBB", 2019, 99e9),
        ])
        entries = compute_top_n(df, COLUMNS, NO_FILTER, "Gt", 2020, n=5)["entries"]
        self.assertLessEqual(len(entries), 5)
        self.assertEqual(entries["entity"].tolist(), ["A", "B", "E", "C", "D"])
        self.assertAlmostEqual(entries["value"].iloc[0], 7.0)
        values = entries["value"].tolist()
        self.assertEqual(values, sorted(values, reverse=True))

    def test_ties_keep_first_appearance(self):
        df = make_frame([("Z", "ZZZ", 2020, 1e9), ("A", "AAA", 2020, 1e9), ("M", "MMM", 2020, 1e9)])
        entries = compute_top_n(df, COLUMNS, NO_FILTER, "Gt", 2020)["entries"]
        self.assertEqual(entries["entity"].tolist(), ["Z", "A", "M"])

    def test_world_total_missing_year_is_zero(self):
        df = make_frame([("A", "AAA", 2020, 1e9)])
        top = compute_top_n(df, COLUMNS, NO_FILTER, "Gt", 2019)
        self.assertEqual(top["world_total"], 0.0)
        self.assertTrue(top["entries"].empty)

    def test_no_year(self):
        top = compute_top_n(make_frame([]), COLUMNS, NO_FILTER, "Gt", None)
        self.assertIsNone(top["year"])
        self.assertTrue(top["entries"].empty)

    def test_ring_rest_never_negative(self):
        entries = pd.DataFrame({"entity": ["World", "A"], "value": [36.0, 10.0]})
        ring = top_share_ring(entries, 36.0)
        self.assertEqual(ring, {"top": 46.0, "rest": 0.0})

    def test_ring_uses_first_five(self):
        entries = pd.DataFrame({"entity": list("ABCDEF"), "value": [6.0, 5.0, 4.0, 3.0, 2.0, 1.0]})
        ring = top_share_ring(entries, 30.0, k=5)
        self.assertEqual(ring, {"top": 20.0, "rest": 10.0})


class TestClassifyChanges(unittest.TestCase):

    def test_drop_to_zero_is_falling_minus_100(self):
        df = make_frame([("X", "XXX", 2019, 100), ("X", "XXX", 2020, 0)])
        ch = classify_changes(df, COLUMNS, NO_FILTER, "Gt", 2020)
        self.assertEqual(ch["falling_count"], 1)
        self.assertEqual(ch["falling"]["entity"].tolist(), ["X"])
        self.assertAlmostEqual(ch["falling"]["delta_pct"].iloc[0], -100.0)

    def test_new_entity_is_rising_100(self):
        df = make_frame([("Old", "OLD", 2019, 5), ("Old", "OLD", 2020, 5), ("New", "NEW", 2020, 7)])
        ch = classify_changes(df, COLUMNS, NO_FILTER, "Mt", 2020)
        self.assertEqual(ch["rising"]["entity"].tolist(), ["New"])
        self.assertEqual(ch["rising"]["delta_pct"].iloc[0], 100.0)
        self.assertEqual(ch["unchanged"]["entity"].tolist(), ["Old"])

    def test_both_zero_unchanged(self):
        df = make_frame([("Z", "ZZZ", 2019, 0), ("Z", "ZZZ", 2020, 0)])
        ch = classify_changes(df, COLUMNS, NO_FILTER, "Gt", 2020)
        self.assertEqual(ch["unchanged_count"], 1)

    def test_gone_entity_is_falling(self):
        df = make_frame([("Gone", "GON", 2019, 4e9)])
        ch = classify_changes(df, COLUMNS, NO_FILTER, "Gt", 2020)
        self.assertEqual(ch["falling"]["entity"].tolist(), ["Gone"])
        self.assertAlmostEqual(ch["falling"]["delta_abs"].iloc[0], -4.0)

    def test_orderings(self):
        df = make_frame([
            ("R1", "R1A", 2019, 1e9), ("R1", "R1A", 2020, 2e9),
            ("R2", "R2A", 2019, 1e9), ("R2", "R2A", 2020, 5e9),
            ("F1", "F1A", 2019, 3e9), ("F1", "F1A", 2020, 2e9),
            ("F2", "F2A", 2019, 9e9), ("F2", "F2A", 2020, 1e9),
            ("b", "BBB", 2019, 1e9), ("b", "BBB", 2020, 1e9),
            ("a", "AAA", 2019, 1e9), ("a", "AAA", 2020, 1e9),
        ])
        ch = classify_changes(df, COLUMNS, NO_FILTER, "Gt", 2020)
        self.assertEqual(ch["rising"]["entity"].tolist(), ["R2", "R1"])
        self.assertEqual(ch["falling"]["entity"].tolist(), ["F2", "F1"])
        self.assertEqual(ch["unchanged"]["entity"].tolist(), ["a", "b"])

    def test_partition_of_union(self):
        rng = np.random.default_rng(11)
        rows = []
        for i in range(40):
            ent = f"E{i}"
            for year in (2019, 2020):
                if rng.random() < 0.8:
                    rows.append((ent, "EEE", year, float(rng.integers(0, 4)) * 1e6))
        df = make_frame(rows)
        ch = classify_changes(df, COLUMNS, NO_FILTER, "Mt", 2020)
        union = set(df.loc[df["Year"].isin([2019, 2020]), "Entity"])
        rising = set(ch["rising"]["entity"])
        falling = set(ch["falling"]["entity"])
        same = set(ch["unchanged"]["entity"])
        self.assertEqual(rising | falling | same, union)
        self.assertFalse(rising & falling or rising & same or falling & same)
        self.assertEqual(ch["rising_count"] + ch["falling_count"] + ch["unchanged_count"], len(union))

    def test_filters_apply_to_both_years(self):
        df = make_frame([("World", "OWID_WRL", 2019, 1e9), ("World", "OWID_WRL", 2020, 2e9),
                         ("A", "AAA", 2019, 1e9), ("A", "AAA", 2020, 2e9)])
        ch = classify_changes(df, COLUMNS, FilterConfig(hide_world=True), "Gt", 2020)
        self.assertEqual(ch["rising"]["entity"].tolist(), ["A"])

    def test_no_year_is_empty(self):
        ch = classify_changes(make_frame([]), COLUMNS, NO_FILTER, "Gt", None)
        self.assertEqual((ch["rising_count"], ch["falling_count"], ch["unchanged_count"]), (0, 0, 0))


class TestPeaks(unittest.TestCase):

    def test_first_row_wins_tie_in_scan_order(self):
        df = make_frame([("A", "AAA", 2001, 50), ("A", "AAA", 1999, 50), ("A", "AAA", 2000, 10)])
        peaks = compute_peaks(df, COLUMNS, NO_FILTER, "Mt")
        self.assertEqual(peaks["year"].tolist(), [2001])

    def test_sorted_truncated_and_maximal(self):
        rng = np.random.default_rng(5)
        rows = [(f"E{i % 20}", "EEE", 1950 + i // 20, float(rng.integers(0, 10**10))) for i in range(400)]
        df = make_frame(rows)
        peaks = compute_peaks(df, COLUMNS, NO_FILTER, "Gt", top_k=15)
        self.assertEqual(len(peaks), 15)
        values = peaks["value"].tolist()
        self.assertEqual(values, sorted(values, reverse=True))
        for ent, value in zip(peaks["entity"], peaks["value"]):
            raw_max = df.loc[df["Entity"] == ent, "Annual CO₂ emissions"].max()
            self.assertAlmostEqual(value, raw_max / 1e9)

    def test_filters_applied(self):
        df = make_frame([("Asia (GCP)", None, 2000, 9e9), ("A", "AAA", 2000, 1e9)])
        peaks = compute_peaks(df, COLUMNS, FilterConfig(hide_gcp=True), "Gt")
        self.assertEqual(peaks["entity"].tolist(), ["A"])

    def test_empty_after_filter(self):
        df = make_frame([("A", "AAA", 2000, 1e9)])
        peaks = compute_peaks(df, COLUMNS, FilterConfig(hide_groups=True, hide_regular=True), "Gt")
        self.assertTrue(peaks.empty)


class TestEntityHistory(unittest.TestCase):

    def test_history_ignores_other_entities(self):
        df = make_frame([("A", "AAA", 2001, 2e6), ("B", "BBB", 2001, 9e6), ("A", "AAA", 2000, 1e6)])
        hist = entity_history(df, COLUMNS, "A", "Mt")
        self.assertEqual(hist["year"].tolist(), [2000, 2001])
        self.assertEqual(hist["value"].tolist(), [1.0, 2.0])

    def test_unknown_entity(self):
        df = make_frame([("A", "AAA", 2001, 2e6)])
        self.assertTrue(entity_history(df, COLUMNS, "Nope", "Mt").empty)


if __name__ == "__main__":
    unittest.main()
