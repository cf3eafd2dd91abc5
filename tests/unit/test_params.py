"""Input declaration parsing, default ranges and code rewrite tests"""

import pytest

from stratopt.params import (DEFAULT_TITLE, ScriptParam, build_param_ranges, format_value,
                             generate_updated_code, parse_arguments, parse_inputs, parse_strategy)
from stratopt.script import DUAL_MA_EXAMPLE


class TestParseInputs:

    def test_example_inputs(self):
        params = {p.var_name: p for p in parse_inputs(DUAL_MA_EXAMPLE)}
        assert list(params) == ["fastLength", "slowLength", "maType", "stopLossPct"]
        fast = params["fastLength"]
        assert fast.type == "int"
        assert fast.default == 9
        assert fast.title == "Fast MA Period"
        assert (fast.min_val, fast.max_val, fast.step) == (2.0, 100.0, 1.0)
        assert params["maType"].default == "EMA"
        assert params["maType"].options == ("SMA", "EMA", "WMA")
        assert params["stopLossPct"].default == pytest.approx(2.0)

    def test_keyword_arguments(self):
        (p,) = parse_inputs('len = input.int(title="Length", defval=14, minval=1)')
        assert p.default == 14
        assert p.title == "Length"
        assert p.min_val == 1.0
        assert p.max_val is None

    def test_bare_input_is_float(self):
        (p,) = parse_inputs("mult = input(2.5)")
        assert p.type == "float"
        assert p.default == 2.5
        assert p.title == "mult"

    def test_bool_and_source(self):
        params = parse_inputs('useFilter = input.bool(true, "Filter")\nsrc = input.source(close, "Src")')
        assert params[0].default is True
        assert params[1].type == "source"
        assert params[1].default == "close"

    def test_parse_arguments(self):
        args = parse_arguments('9, "Fast", minval=2, options=["a", "b"]')
        assert args == {"defval": "9", "title": '"Fast"', "minval": "2", "options": '["a", "b"]'}


class TestParseStrategy:

    def test_title_and_logic(self):
        parsed = parse_strategy(DUAL_MA_EXAMPLE)
        assert parsed.title == "Dual MA Crossover"
        assert parsed.is_valid
        assert parsed.detected_logic == "dual_ma"
        assert parsed.defaults["slowLength"] == 21

    def test_default_title(self):
        parsed = parse_strategy("x = close")
        assert parsed.title == DEFAULT_TITLE
        assert not parsed.is_valid
        assert parsed.detected_logic == "custom"

    @pytest.mark.parametrize("code,logic", [
        ("r = ta.rsi(close, 14)", "rsi"),
        ("[u, m, l] = ta.bb(close, 20, 2)", "bollinger"),
        ("[a, b, c] = ta.macd(close, 12, 26, 9)", "macd"),
        ("fastLen = input.int(5)\nmidLen = input.int(13)\nslowLen = input.int(34)\nx = ta.ema(close, fastLen)", "triple_ma"),
    ])
    def test_detect_logic(self, code, logic):
        assert parse_strategy(code).detected_logic == logic


class TestBuildParamRanges:

    def test_declared_bounds_win(self):
        ranges = {r.var_name: r for r in build_param_ranges(parse_inputs(DUAL_MA_EXAMPLE))}
        assert set(ranges) == {"fastLength", "slowLength", "stopLossPct"}
        fast = ranges["fastLength"]
        assert (fast.min, fast.max, fast.step, fast.type) == (2.0, 100.0, 1.0, "int")
        assert fast.enabled
        assert ranges["stopLossPct"].step == pytest.approx(0.1)

    def test_derived_bounds(self):
        (r,) = build_param_ranges([ScriptParam("len", "len", "int", 14)])
        assert (r.min, r.max, r.step) == (4.0, 42.0, 1.0)

    def test_derived_float_step_and_floor(self):
        (r,) = build_param_ranges([ScriptParam("mult", "mult", "float", 1.5)])
        assert r.step == 0.5
        assert r.min == 1.0
        assert r.max == 5.0  # round(4.5) half-up

    def test_non_numeric_skipped(self):
        params = [ScriptParam("t", "t", "string", "EMA"), ScriptParam("b", "b", "bool", True)]
        assert build_param_ranges(params) == []


class TestGenerateUpdatedCode:

    def test_rewrites_positional_defaults(self):
        params = parse_inputs(DUAL_MA_EXAMPLE)
        code = generate_updated_code(DUAL_MA_EXAMPLE, params, {"fastLength": 12, "maType": "SMA"})
        assert 'fastLength = input.int(12, "Fast MA Period", minval=2, maxval=100, step=1)' in code
        assert 'maType = input.string("SMA", "MA Type", options=["SMA", "EMA", "WMA"])' in code
        assert 'slowLength = input.int(21, "Slow MA Period"' in code

    def test_rewrites_keyword_default(self):
        code = 'len = input.int(title="Length", defval=14)'
        out = generate_updated_code(code, parse_inputs(code), {"len": 20.0})
        assert out == 'len = input.int(title="Length", defval=20)'

    def test_bool_and_float(self):
        code = 'f = input.bool(false, "F")\nm = input.float(2.0, "M")'
        out = generate_updated_code(code, parse_inputs(code), {"f": True, "m": 2.5})
        assert out == 'f = input.bool(true, "F")\nm = input.float(2.5, "M")'

    def test_untouched_without_values(self):
        assert generate_updated_code(DUAL_MA_EXAMPLE, parse_inputs(DUAL_MA_EXAMPLE), {}) == DUAL_MA_EXAMPLE

    def test_format_value(self):
        assert format_value(3.0) == "3"
        assert format_value(2.5) == "2.5"
        assert format_value(False) == "false"
