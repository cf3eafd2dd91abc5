"""Script input declarations: discovery, default search ranges, code rewrite.

A script declares its tunable parameters with ``input`` calls::

    fastLength = input.int(9, "Fast MA Period", minval=2, maxval=100, step=1)
    maType     = input.string("EMA", "MA Type", options=["SMA", "EMA", "WMA"])

``parse_strategy`` collects them, ``build_param_ranges`` turns the numeric
ones into optimizer axes and ``generate_updated_code`` writes optimized
values back into the script text.
"""

import math
import re
from dataclasses import dataclass

from stratopt.expressions import split_args
from stratopt.models import ParamRange

_INPUT = re.compile(
    r"(\w+)\s*=\s*input(?:\.(int|float|bool|string|source))?\s*\(([^)]*(?:\([^)]*\)[^)]*)*)\)"
)
_KEYWORD = re.compile(r"(\w+)\s*=(?!=)\s*(.*)$", re.S)
_NUMBER = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_TITLE = re.compile(r"strategy\s*\(\s*[\"']([^\"']+)[\"']")
_MA_PERIOD = re.compile(r"len|length|period|per|ma|ema|sma|fast|mid|slow", re.I)

POSITIONAL_KEYS = ("defval", "title", "type", "minval", "maxval", "step", "options")

DEFAULT_TITLE = "Custom Strategy"


@dataclass(frozen=True)
class ScriptParam:
    var_name: str
    title: str
    type: str  # int | float | bool | string | source
    default: object
    min_val: float | None = None
    max_val: float | None = None
    step: float | None = None
    options: tuple | None = None

    @property
    def numeric(self):
        return self.type in ("int", "float")


@dataclass(frozen=True)
class ParsedStrategy:
    params: list
    title: str
    is_valid: bool
    detected_logic: str  # dual_ma | triple_ma | rsi | bollinger | macd | custom

    @property
    def defaults(self):
        return {p.var_name: p.default for p in self.params}


def _clean(text):
    return re.sub(r"^[\"']|[\"']$", "", text.strip()).strip()


def _number(text):
    # leading-number parse: "14" -> 14.0, "2.5x" -> 2.5, "abc" -> None
    if text is None:
        return None
    m = _NUMBER.match(text)
    return float(m.group()) if m else None


def parse_arguments(text):
    """``input(...)`` argument text → dict keyed by the input() parameter names."""
    args = {}
    positional = []
    for part in split_args(text):
        m = _KEYWORD.match(part)
        if m:
            args[m.group(1)] = m.group(2).strip()
        else:
            positional.append(part)
    for key, value in zip(POSITIONAL_KEYS, positional):
        args.setdefault(key, value)
    return args


def _default_value(kind, defval):
    if kind == "bool":
        return defval.lower() == "true"
    if kind in ("string", "source"):
        return _clean(defval)
    value = _number(defval)
    if value is None:
        return 0
    return int(value) if kind == "int" and value.is_integer() else value


def parse_inputs(code):
    params = []
    for m in _INPUT.finditer(code):
        name, kind, arg_text = m.group(1), m.group(2) or "float", m.group(3)
        args = parse_arguments(arg_text)
        options = None
        if args.get("options"):
            opt = re.search(r"\[([^\]]+)\]", args["options"])
            if opt:
                options = tuple(_clean(s) for s in opt.group(1).split(","))
        params.append(ScriptParam(
            var_name=name,
            title=_clean(args["title"]) if args.get("title") else name,
            type=kind,
            default=_default_value(kind, args.get("defval", "")),
            min_val=_number(args.get("minval")),
            max_val=_number(args.get("maxval")),
            step=_number(args.get("step")),
            options=options,
        ))
    return params


def detect_logic(code, params):
    lower = code.lower()
    if "ta.rsi" in lower or "rsi(" in lower:
        return "rsi"
    if "ta.bb(" in lower or "bollinger" in lower:
        return "bollinger"
    if "ta.macd" in lower or "macd" in lower:
        return "macd"
    if any(token in lower for token in ("ta.sma", "ta.ema", "crossover", "ta.wma")):
        periods = [p for p in params if p.numeric and _MA_PERIOD.search(p.var_name)]
        return "triple_ma" if len(periods) >= 3 else "dual_ma"
    return "custom"


def parse_strategy(code):
    params = parse_inputs(code)
    m = _TITLE.search(code)
    return ParsedStrategy(
        params=params,
        title=m.group(1) if m else DEFAULT_TITLE,
        is_valid=bool(params) or "strategy(" in code,
        detected_logic=detect_logic(code, params),
    )


def _round_half_up(x):
    return int(math.floor(x + 0.5))


def build_param_ranges(params):
    """Numeric inputs → enabled ParamRanges around their defaults.

    Declared ``minval``/``maxval``/``step`` win; otherwise the range is
    ``[max(1, round(default*0.3)), round(default*3)]`` with step 1 (int) or
    0.5 (float).
    """
    ranges = []
    for p in params:
        if not p.numeric:
            continue
        default = float(p.default)
        step = p.step if p.step is not None else (0.5 if p.type == "float" else 1.0)
        lo = p.min_val if p.min_val is not None else max(1, _round_half_up(default * 0.3))
        hi = p.max_val if p.max_val is not None else _round_half_up(default * 3)
        ranges.append(ParamRange(
            var_name=p.var_name, min=float(lo), max=float(hi), step=float(step),
            type=p.type, title=p.title,
        ))
    return ranges


def format_value(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)) and float(value).is_integer():
        return str(int(value))
    return str(value)


def generate_updated_code(code, params, values):
    """Rewrite the default of every input declaration named in ``values``.

    Both ``defval=`` and positional defaults are handled; declarations of
    other names and the rest of the text are left byte-for-byte unchanged.
    """
    for p in params:
        if p.var_name not in values:
            continue
        new = values[p.var_name]
        pattern = re.compile(
            r"(\b" + re.escape(p.var_name)
            + r"\s*=\s*input(?:\.(?:int|float|bool|string|source))?\s*\()"
            r"([^)]*(?:\([^)]*\)[^)]*)*)(\))"
        )
        if p.numeric:
            text = format_value(new)
            keyword, positional = r"defval\s*=\s*-?[\d.]+", r"^(\s*)-?[\d.]+"
        elif p.type == "bool":
            text = format_value(bool(new))
            keyword, positional = r"(?i)defval\s*=\s*(?:true|false)", r"(?i)^(\s*)(?:true|false)"
        elif p.type == "string":
            text = '"' + str(new) + '"'
            keyword, positional = r"defval\s*=\s*[\"'][^\"']*[\"']", r"^(\s*)[\"'][^\"']*[\"']"
        else:
            continue

        def rewrite(m, text=text, keyword=keyword, positional=positional):
            args = m.group(2)
            updated = re.sub(keyword, lambda _: "defval=" + text, args, count=1)
            if updated == args:
                updated = re.sub(positional, lambda k: k.group(1) + text, args, count=1)
            return m.group(1) + updated + m.group(3)

        code = pattern.sub(rewrite, code)
    return code
