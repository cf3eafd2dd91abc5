"""Expression evaluator for the strategy script language.

One line of script text is turned into a numeric series, a boolean series
or a scalar.  There is no tokenizer: the evaluator tries a fixed list of
constructs in order and the first one that produces a value wins.  That
order *is* the operator precedence:

    1. ( ... )            parentheses wrapping the whole expression
    2. c ? a : b          ternary
    3. or  ||             logical or
    4. and &&             logical and
    5. not !              prefix negation
    6. >= <= != == > <    comparison (string equality as fallback)
    7. + - * /            arithmetic
    8. name[n]            series history
    9. f(args)            built-in call
    10. literals / identifiers

If a construct matches the text but one of its operands does not resolve,
the next construct is tried (``2 * -3`` is not a subtraction).  Mixed
series/scalar operands broadcast to the bar count.

A boolean series never equals ``true`` or ``false``: ``cond == true`` is
all-False.  Test the series itself (``if cond``) instead.
"""

import math
import re
from enum import Enum

import numpy as np

from stratopt import indicators

Value = np.ndarray | float | bool | str


class UnresolvedExpression(ValueError):
    """No construct of the grammar produced a value for the text."""


class Builtin(Enum):
    SMA = "ta.sma"
    EMA = "ta.ema"
    WMA = "ta.wma"
    RMA = "ta.rma"
    RSI = "ta.rsi"
    CROSSOVER = "ta.crossover"
    CROSSUNDER = "ta.crossunder"
    HIGHEST = "ta.highest"
    LOWEST = "ta.lowest"
    STOCH = "ta.stoch"
    ATR = "ta.atr"
    MACD = "ta.macd"
    BB = "ta.bb"
    ABS = "math.abs"
    MAX = "math.max"
    MIN = "math.min"
    NZ = "nz"

    @classmethod
    def lookup(cls, name):
        try:
            return cls(name)
        except ValueError:
            return None


MULTI_OUTPUT = (Builtin.MACD, Builtin.BB)

_COMPARISONS = (">=", "<=", "!=", "==", ">", "<")
_ARITHMETIC = ("+", "-", "*", "/")
_GUARD_CHARS = "=<>!"
_QUOTES = "\"'"

_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_IDENT = re.compile(r"[A-Za-z_]\w*$")
_CALL_NAME = re.compile(r"[A-Za-z_][\w.]*$")
_HISTORY = re.compile(r"(\w+)\[(\d+)\]$")


# ---------------------------------------------------------------------------
# Text splitting
# ---------------------------------------------------------------------------

def _top_level(text):
    """Yield indices of characters outside quotes and outside ()/[] nesting."""
    depth = 0
    quote = None
    for i, ch in enumerate(text):
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif depth == 0:
            yield i


def split_candidates(text, op):
    """All ``(left, right)`` splits of ``text`` on a top-level ``op``, left to right.

    A one-character operator never matches next to ``= < > !`` so that
    ``>`` does not split ``>=`` and ``=`` does not split ``==``.  Both sides
    must be non-empty.
    """
    width = len(op)
    out = []
    for i in _top_level(text):
        if not text.startswith(op, i):
            continue
        if width == 1:
            before = text[i - 1] if i > 0 else " "
            after = text[i + 1] if i + 1 < len(text) else " "
            if before in _GUARD_CHARS or after in _GUARD_CHARS:
                continue
        left = text[:i].strip()
        right = text[i + width:].strip()
        if left and right:
            out.append((left, right))
    return out


def split_binary(text, op, last=False):
    candidates = split_candidates(text, op)
    if not candidates:
        return None
    return candidates[-1] if last else candidates[0]


def split_args(text):
    """Split a call's argument text on top-level commas."""
    args = []
    start = 0
    for i in _top_level(text):
        if text[i] == ",":
            args.append(text[start:i].strip())
            start = i + 1
    tail = text[start:].strip()
    if tail:
        args.append(tail)
    return args


def _closes_at_end(text, open_idx):
    """True when the bracket at ``open_idx`` is closed by the last character."""
    depth = 0
    quote = None
    for i in range(open_idx, len(text)):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in _QUOTES:
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i == len(text) - 1
    return False


def parse_call(text):
    """``name(a, b)`` → ``("name", ["a", "b"])``, or None."""
    idx = text.find("(")
    if idx <= 0 or not text.endswith(")") or not _closes_at_end(text, idx):
        return None
    name = text[:idx].strip()
    if not _CALL_NAME.match(name):
        return None
    return name, split_args(text[idx + 1:-1])


def _is_string_literal(text):
    return len(text) >= 2 and text[0] in _QUOTES and text[-1] == text[0]


def _to_text(value):
    # string form used by the == / != fallback
    if isinstance(value, np.ndarray):
        return None
    if isinstance(value, (bool, np.bool_)):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _divide(a, b):
    with np.errstate(divide="ignore", invalid="ignore"):
        out = np.true_divide(a, b)
    return np.where(b == 0, np.nan, out)


_COMPARE = {
    ">=": np.greater_equal,
    "<=": np.less_equal,
    "!=": np.not_equal,
    "==": np.equal,
    ">": np.greater,
    "<": np.less,
}

_ARITH = {
    "+": np.add,
    "-": np.subtract,
    "*": np.multiply,
    "/": _divide,
}


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

class Evaluator:
    """Evaluate expression text against a name → value environment.

    ``env`` is read, never written.  ``length`` is the bar count every series
    has and every scalar is broadcast to.
    """

    def __init__(self, env, length):
        self.env = env
        self.length = length

    def evaluate(self, text) -> Value:
        value = self._eval(text.strip())
        if value is None:
            raise UnresolvedExpression(text.strip())
        return value

    def try_evaluate(self, text):
        return self._eval(text.strip())

    def call_multi(self, name, args):
        """Evaluate ``ta.macd`` / ``ta.bb`` and return the whole named tuple."""
        builtin = Builtin.lookup(name)
        if builtin not in MULTI_OUTPUT:
            raise UnresolvedExpression(f"{name} has a single output")
        result = self._macd(args) if builtin is Builtin.MACD else self._bands(args)
        if result is None:
            raise UnresolvedExpression(f"{name}({', '.join(args)})")
        return result

    # -- conversions --------------------------------------------------------

    def numeric(self, value):
        """Value → float64 series, or None for strings and bare booleans."""
        if isinstance(value, np.ndarray):
            return value.astype(np.float64) if value.dtype == bool else value
        if isinstance(value, (bool, np.bool_, str)) or value is None:
            return None
        return np.full(self.length, float(value))

    def boolean(self, value):
        """Value → bool series; NaN and 0 count as False, strings do not convert."""
        if isinstance(value, np.ndarray):
            if value.dtype == bool:
                return value
            return ~np.isnan(value) & (value != 0)
        if isinstance(value, (bool, np.bool_)):
            return np.full(self.length, bool(value))
        if isinstance(value, (int, float)):
            return np.full(self.length, not math.isnan(value) and value != 0)
        return None

    def _num(self, text):
        return self.numeric(self._eval(text))

    def _bool(self, text):
        return self.boolean(self._eval(text))

    # -- grammar ------------------------------------------------------------

    def _eval(self, e):
        e = e.strip()
        if not e:
            return None

        if e[0] == "(" and _closes_at_end(e, 0):
            return self._eval(e[1:-1])

        value = self._ternary(e)
        if value is not None:
            return value

        for ops, combine in (((" or ", "||"), np.logical_or), ((" and ", "&&"), np.logical_and)):
            for op in ops:
                parts = split_binary(e, op)
                if parts:
                    a, b = self._bool(parts[0]), self._bool(parts[1])
                    if a is not None and b is not None:
                        return combine(a, b)

        if e.startswith("not ") or e.startswith("!"):
            a = self._bool(e[4:] if e.startswith("not ") else e[1:])
            if a is not None:
                return ~a

        value = self._comparison(e)
        if value is not None:
            return value

        value = self._arithmetic(e)
        if value is not None:
            return value

        m = _HISTORY.match(e)
        if m:
            series = self.env.get(m.group(1))
            if isinstance(series, np.ndarray):
                return indicators.shift(series, int(m.group(2)))

        call = parse_call(e)
        if call:
            builtin = Builtin.lookup(call[0])
            if builtin is not None:
                value = self._call(builtin, call[1])
                if value is not None:
                    return value

        if _is_string_literal(e):
            return e[1:-1]
        if _NUMBER.match(e):
            return float(e)
        if e == "true":
            return True
        if e == "false":
            return False
        if _IDENT.match(e):
            return self.env.get(e)
        return None

    def _ternary(self, e):
        parts = split_binary(e, "?")
        if not parts:
            return None
        branches = split_binary(parts[1], ":")
        if not branches:
            return None
        cond = self._bool(parts[0])
        if cond is None:
            return None
        a, b = self._eval(branches[0]), self._eval(branches[1])
        if self._is_boolish(a) and self._is_boolish(b):
            return np.where(cond, self.boolean(a), self.boolean(b))
        a, b = self.numeric(a), self.numeric(b)
        if a is None or b is None:
            return None
        return np.where(cond, a, b)

    @staticmethod
    def _is_boolish(value):
        if isinstance(value, np.ndarray):
            return value.dtype == bool
        return isinstance(value, (bool, np.bool_))

    def _comparison(self, e):
        for op in _COMPARISONS:
            parts = split_binary(e, op)
            if not parts:
                continue
            a, b = self._num(parts[0]), self._num(parts[1])
            if a is not None and b is not None:
                return _COMPARE[op](a, b)
            if op in ("==", "!="):
                left, right = self._eval(parts[0]), self._eval(parts[1])
                if left is not None and right is not None:
                    text = _to_text(left)
                    equal = text is not None and text == _to_text(right)
                    return np.full(self.length, equal if op == "==" else not equal)
        return None

    def _arithmetic(self, e):
        # rightmost split first so - and / associate left
        for op in _ARITHMETIC:
            for left, right in reversed(split_candidates(e, op)):
                a, b = self._num(left), self._num(right)
                if a is not None and b is not None:
                    return _ARITH[op](a, b)
        return None

    # -- built-ins ----------------------------------------------------------

    def _period(self, text, default=14):
        if text is None:
            return default
        value = self.env.get(text.strip())
        if isinstance(value, (bool, np.bool_)):
            return default
        if isinstance(value, (int, float)):
            return indicators.as_period(value, default)
        return indicators.as_period(text.strip(), default)

    def _scalar(self, text, default):
        if text is None:
            return default
        value = self.env.get(text.strip())
        if isinstance(value, (int, float)) and not isinstance(value, (bool, np.bool_)):
            return float(value)
        try:
            value = float(text)
        except ValueError:
            return default
        return default if math.isnan(value) or value == 0 else value

    def _arg(self, args, i, default=None):
        return args[i] if i < len(args) else default

    def _call(self, builtin, args):
        if builtin is Builtin.MACD:
            result = self._macd(args)
            return None if result is None else result.macd
        if builtin is Builtin.BB:
            result = self._bands(args)
            return None if result is None else result.basis
        if builtin is Builtin.ATR:
            high, low, close = (self.numeric(self.env.get(k)) for k in ("high", "low", "close"))
            if high is None or low is None or close is None:
                return None
            return indicators.atr(high, low, close, self._period(self._arg(args, 0)))
        if builtin is Builtin.STOCH:
            return self._stoch(args)

        src = self._num(self._arg(args, 0, ""))
        if src is None:
            return None

        if builtin in _SMOOTHERS:
            return _SMOOTHERS[builtin](src, self._period(self._arg(args, 1)))
        if builtin is Builtin.ABS:
            return np.abs(src)
        if builtin is Builtin.NZ:
            fallback = self._arg(args, 1)
            fill = 0.0
            if fallback is not None and _NUMBER.match(fallback):
                fill = float(fallback)
            return np.where(np.isnan(src), fill, src)

        other = self._num(self._arg(args, 1, ""))
        if other is None:
            return None
        if builtin is Builtin.CROSSOVER:
            return indicators.crossover(src, other)
        if builtin is Builtin.CROSSUNDER:
            return indicators.crossunder(src, other)
        if builtin is Builtin.MAX:
            return np.maximum(src, other)
        if builtin is Builtin.MIN:
            return np.minimum(src, other)
        raise AssertionError(f"unhandled builtin {builtin}")

    def _stoch(self, args):
        # ta.stoch(src, high, low, len); ta.stoch(src, len) uses the bar high/low
        if len(args) <= 2:
            src_text, high_text, low_text = self._arg(args, 0, "close"), "high", "low"
            length = self._arg(args, 1)
        else:
            src_text, high_text, low_text = args[0], args[1], args[2]
            length = self._arg(args, 3)
        src, high, low = self._num(src_text), self._num(high_text), self._num(low_text)
        if src is None or high is None or low is None:
            return None
        return indicators.stoch(src, high, low, self._period(length))

    def _macd(self, args):
        src = self._num(self._arg(args, 0, "close"))
        if src is None:
            return None
        return indicators.macd(
            src,
            self._period(self._arg(args, 1), 12),
            self._period(self._arg(args, 2), 26),
            self._period(self._arg(args, 3), 9),
        )

    def _bands(self, args):
        src = self._num(self._arg(args, 0, "close"))
        if src is None:
            return None
        return indicators.bollinger(
            src,
            self._period(self._arg(args, 1), 20),
            self._scalar(self._arg(args, 2), 2.0),
        )


_SMOOTHERS = {
    Builtin.SMA: indicators.sma,
    Builtin.EMA: indicators.ema,
    Builtin.WMA: indicators.wma,
    Builtin.RMA: indicators.rma,
    Builtin.RSI: indicators.rsi,
    Builtin.HIGHEST: indicators.highest,
    Builtin.LOWEST: indicators.lowest,
}
