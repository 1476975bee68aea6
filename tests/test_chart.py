"""Tests for the chart renderer."""

import pytest

from conftest import make_candles

from stockterm.chart import (
    BLANK, TOO_SMALL, PriceScale, aggregate, axis_label, chart_header,
    chart_text, price_scale, render_chart, sample_index, sparkline,
)
from stockterm.constants import (
    GLYPH_AREA_CAP, GLYPH_AREA_FILL, GLYPH_BODY_DOWN, GLYPH_BODY_UP,
    GLYPH_CONNECTOR, GLYPH_LINE, GLYPH_WICK, SPARK_BLOCKS,
)
from stockterm.models import Candle, ChartMode, TimeRange


def column(render, col):
    return [render.grid[r][col] for r in range(render.height)]


def line_rows(render):
    """Row of the line glyph in each column."""
    rows = []
    for col in range(render.width):
        hits = [r for r, cell in enumerate(column(render, col)) if cell.glyph == GLYPH_LINE]
        assert len(hits) == 1, f"column {col} has {len(hits)} line glyphs"
        rows.append(hits[0])
    return rows


class TestCanvas:
    @pytest.mark.parametrize("width, height", [(9, 10), (40, 3), (0, 0), (-5, 20)])
    def test_too_small(self, width, height):
        assert render_chart(make_candles([1.0, 2.0]), width, height, ChartMode.LINE) is TOO_SMALL

    def test_too_small_wins_over_empty_series(self):
        assert render_chart([], 5, 5, ChartMode.LINE) is TOO_SMALL

    def test_empty_series_is_an_error(self):
        with pytest.raises(ValueError):
            render_chart([], 40, 10, ChartMode.LINE)

    @pytest.mark.parametrize("mode", list(ChartMode))
    def test_dimensions(self, mode):
        render = render_chart(make_candles([5.0, 6.0, 4.0, 7.0]), 32, 12, mode)
        assert render.width == 32
        assert render.height == 12
        assert all(len(row) == 32 for row in render.grid)

    @pytest.mark.parametrize("mode", list(ChartMode))
    def test_deterministic(self, mode):
        series = make_candles([10.0, 12.5, 11.0, 13.0, 9.5, 14.0, 12.0])
        assert render_chart(series, 40, 10, mode) == render_chart(series, 40, 10, mode)


class TestScale:
    def test_extremes_land_on_first_and_last_rows(self):
        scale = price_scale([100.0, 105.0, 110.0], 10)
        assert scale.row(110.0) == 0
        assert scale.row(100.0) == 9

    def test_rows_are_clamped(self):
        scale = price_scale([100.0, 110.0], 10)
        assert scale.row(1_000.0) == 0
        assert scale.row(-1_000.0) == 9

    def test_padding(self):
        scale = price_scale([100.0, 110.0], 10)
        assert scale.max_price == pytest.approx(110.5)
        assert scale.min_price == pytest.approx(99.5)

    def test_flat_series_does_not_divide_by_zero(self):
        scale = price_scale([50.0, 50.0, 50.0], 10)
        assert scale.spread > 0
        assert 0 < scale.row(50.0) < 9

    def test_flat_zero_series(self):
        scale = price_scale([0.0, 0.0], 10)
        assert scale.spread > 0

    def test_non_positive_closes_ignored(self):
        scale = price_scale([0.0, 100.0, -3.0, 110.0], 10)
        assert scale.min_price == pytest.approx(99.5)

    def test_sample_index(self):
        assert [sample_index(c, 20, 40) for c in range(4)] == [0, 0, 1, 1]
        assert sample_index(39, 20, 40) == 19
        assert [sample_index(c, 100, 10) for c in (0, 9)] == [0, 90]


class TestLine:
    def test_rising_series(self):
        series = make_candles([float(i) for i in range(1, 21)])
        render = render_chart(series, 40, 10, ChartMode.LINE)
        rows = line_rows(render)
        assert rows[0] == 9
        assert rows[-1] == 0
        assert all(a >= b for a, b in zip(rows, rows[1:]))

    def test_connectors_fill_row_jumps(self):
        closes = [1.0, 10.0] * 5
        render = render_chart(make_candles(closes), 10, 10, ChartMode.LINE)
        col1 = [cell.glyph for cell in column(render, 1)]
        assert col1[0] == GLYPH_LINE
        assert all(g == GLYPH_CONNECTOR for g in col1[1:])

    def test_down_moves_are_coloured_down(self):
        closes = [5.0, 6.0, 4.0, 7.0, 3.0, 8.0, 2.0, 9.0, 1.0, 10.0]
        render = render_chart(make_candles(closes), 10, 10, ChartMode.LINE)
        flags = []
        for col in range(10):
            cell = next(c for c in column(render, col) if c.glyph == GLYPH_LINE)
            flags.append(cell.up)
        assert flags == [True, True, False, True, False, True, False, True, False, True]

    def test_cells_off_the_line_stay_blank(self):
        render = render_chart(make_candles([3.0] * 12), 12, 8, ChartMode.LINE)
        for row in render.grid:
            for cell in row:
                assert cell.glyph in (GLYPH_LINE, BLANK.glyph)


class TestArea:
    def test_cap_then_fill_to_bottom(self):
        closes = [float(i) for i in range(1, 11)]
        render = render_chart(make_candles(closes), 10, 8, ChartMode.AREA)
        for col in range(10):
            glyphs = [c.glyph for c in column(render, col)]
            top = glyphs.index(GLYPH_AREA_CAP)
            assert all(g == BLANK.glyph for g in glyphs[:top])
            assert all(g == GLYPH_AREA_FILL for g in glyphs[top + 1:])
        assert column(render, 9)[0].glyph == GLYPH_AREA_CAP
        assert column(render, 0)[7].glyph == GLYPH_AREA_CAP


class TestCandles:
    def test_one_candle_per_column(self):
        series = [
            Candle(open=10, high=14, low=9, close=13),
            Candle(open=13, high=13.5, low=8, close=8.5),
        ] * 5
        render = render_chart(series, 10, 12, ChartMode.CANDLE)
        up_col = [c.glyph for c in column(render, 0)]
        down_col = [c.glyph for c in column(render, 1)]
        assert GLYPH_BODY_UP in up_col and GLYPH_BODY_DOWN not in up_col
        assert GLYPH_BODY_DOWN in down_col
        assert GLYPH_WICK in up_col
        assert all(c.up for c in column(render, 0) if c.glyph != " ")
        assert not any(c.up for c in column(render, 1) if c.glyph != " ")

    def test_buckets_when_more_candles_than_columns(self):
        series = make_candles([float(i) for i in range(1, 41)])
        render = render_chart(series, 10, 10, ChartMode.CANDLE)
        for col in range(10):
            assert any(c.glyph != " " for c in column(render, col))

    def test_short_series_leaves_trailing_columns_blank(self):
        series = make_candles([10.0, 11.0, 12.0])
        render = render_chart(series, 10, 10, ChartMode.CANDLE)
        for col in range(3):
            assert any(c.glyph != " " for c in column(render, col))
        for col in range(3, 10):
            assert all(c == BLANK for c in column(render, col))

    def test_aggregate(self):
        bucket = [
            Candle(open=10, high=12, low=0, close=11, timestamp=1),
            Candle(open=11, high=15, low=9, close=14, timestamp=2),
            Candle(open=14, high=13, low=10, close=12, timestamp=3),
        ]
        c = aggregate(bucket)
        assert (c.open, c.high, c.low, c.close, c.timestamp) == (10, 15, 9, 12, 1)

    def test_aggregate_without_positive_lows(self):
        c = aggregate([Candle(open=5, high=6, low=0, close=4)])
        assert c.low == 4


class TestSparkline:
    def test_extremes_use_lowest_and_highest_blocks(self):
        cells = sparkline([1.0, 4.0, 8.0], 3)
        assert cells[0].glyph == SPARK_BLOCKS[0]
        assert cells[2].glyph == SPARK_BLOCKS[-1]
        assert all(c.glyph in SPARK_BLOCKS for c in cells)

    def test_colour_follows_previous_point(self):
        cells = sparkline([3.0, 2.0, 2.5, 1.0], 4)
        assert [c.up for c in cells] == [True, False, True, False]

    def test_flat_series(self):
        cells = sparkline([7.0] * 5, 5)
        assert [c.glyph for c in cells] == [SPARK_BLOCKS[0]] * 5

    def test_width_matches_chart(self):
        render = render_chart(make_candles([1.0, 3.0, 2.0]), 25, 6, ChartMode.AREA)
        assert len(render.sparkline) == 25

    def test_empty(self):
        assert sparkline([], 10) == ()


class TestText:
    def test_axis_labels(self):
        scale = price_scale([100.0, 110.0], 10)
        assert axis_label(0, scale) == "  110.50 "
        assert axis_label(9, scale) == "   99.50 "
        assert axis_label(5, scale) == "  105.00 "
        assert axis_label(3, scale) == " " * 9

    def test_large_prices_keep_label_width(self):
        big = PriceScale(max_price=123456.78, min_price=100000.0, height=10)
        assert axis_label(0, big) == "  123457 "
        assert axis_label(9, big) == "  100000 "
        huge = PriceScale(max_price=2.5e8, min_price=1e8, height=10)
        assert axis_label(0, huge) == "2.50e+08 "
        assert axis_label(9, huge) == "1.00e+08 "

    def test_large_prices_keep_grid_aligned(self):
        render = render_chart(make_candles([150000.0, 160000.0, 155000.0]), 20, 6, ChartMode.LINE)
        lines = chart_text(render).plain.split("\n")
        assert all(len(line) == 9 + 20 for line in lines[:6])

    def test_header(self):
        series = make_candles([100.0, 101.0, 102.0, 101.5, 103.0])
        header = chart_header("AAPL", TimeRange.H24, series, ChartMode.LINE)
        assert header.plain == "AAPL  24H  $103.00 (+3.00%)  [Line]"

    def test_header_when_stale(self):
        series = make_candles([100.0, 95.0])
        header = chart_header("AAPL", TimeRange.D7, series, ChartMode.CANDLE, stale_remaining=9.6)
        assert "(-5.00%)" in header.plain
        assert "[Candle]" in header.plain
        assert header.plain.endswith("⚠ RATE LIMITED (refreshing in 10s)")

    def test_chart_text_layout(self):
        render = render_chart(make_candles([1.0, 2.0, 3.0]), 20, 6, ChartMode.LINE)
        lines = chart_text(render).plain.split("\n")
        assert len(lines) == 6 + 2
        assert lines[6] == ""
        assert lines[7].startswith("   Trend ")
        assert len(lines[7]) == len("   Trend ") + 20
        assert all(len(line) == 9 + 20 for line in lines[:6])
