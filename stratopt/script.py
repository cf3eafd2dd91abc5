"""Strategy scripts: parse text into statements, then execute them over bars.

Parsing and execution are separate steps::

    statements = parse_script(code)
    run = execute(statements, prices, {"fastLength": 9})
    run.signals      # ordered Signal list for the simulator
    run.conditions   # condition name -> bool series

Blocks are indentation based.  An ``if`` owns every following line that is
indented deeper than the ``if`` itself; the first line at the same or a
shallower indentation ends the block.  ``else if`` / ``else`` at the ``if``'s
indentation continue the chain.

Only signal calls and nested ``if``s take effect inside a block.
Assignments there are reported in ``ScriptRun.skipped`` and not executed.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from stratopt.expressions import (Builtin, Evaluator, UnresolvedExpression, parse_call,
                                  split_args)


class SignalKind(str, Enum):
    OPEN_LONG = "long"
    OPEN_SHORT = "short"
    CLOSE_LONG = "close_long"
    CLOSE_SHORT = "close_short"
    CLOSE_ANY = "close_all"


@dataclass(frozen=True)
class Signal:
    kind: SignalKind
    condition: str
    label: str | None = None


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Assignment:
    line: int
    name: str
    expr: str


@dataclass(frozen=True)
class MultiAssignment:
    line: int
    names: tuple
    builtin: Builtin
    args: tuple


@dataclass(frozen=True)
class SignalCall:
    line: int
    kind: SignalKind
    label: str | None = None


@dataclass(frozen=True)
class Branch:
    line: int
    condition: str
    body: tuple


@dataclass(frozen=True)
class IfStatement:
    line: int
    branches: tuple
    else_body: tuple = ()


@dataclass(frozen=True)
class _Line:
    number: int  # 1-based
    indent: int
    text: str


_IF = re.compile(r"if\b\s*(.*)$")
_ELSE_IF = re.compile(r"else\s+if\b\s*(.*)$")
_ELSE = re.compile(r"else\s*[:{]?$")
_SIGNAL = re.compile(r"strategy\.(entry|close_all|close|exit)\s*\(")
_DESTRUCTURE = re.compile(
    r"\[\s*(\w+(?:\s*,\s*\w+){0,2})\s*\]\s*(?::=|=)\s*(ta\.macd|ta\.bb)\s*\((.*)\)$"
)
_ASSIGN = re.compile(
    r"(?:var\s+|varip\s+)?(?:(?:int|float|bool|string)\s+)?(\w+)\s*(?::=|=(?!=))\s*(.+)$"
)
_DECLARATION = re.compile(r"(input|strategy)\b")
_SOURCE_INPUT = re.compile(r"input\.source\s*\((.*)\)$")


def strip_comment(line):
    """Drop a ``//`` comment that is not inside a string literal."""
    quote = None
    for i, ch in enumerate(line):
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif line.startswith("//", i):
            return line[:i].rstrip()
    return line.rstrip()


def _unquote(text):
    return text.strip().strip("\"'")


def _lines(code):
    out = []
    for number, raw in enumerate(code.splitlines(), start=1):
        raw = strip_comment(raw.expandtabs(4))
        text = raw.strip()
        if text:
            out.append(_Line(number, len(raw) - len(raw.lstrip()), text))
    return out


def _clean_condition(text):
    text = re.sub(r"\s*then\s*$", "", text)
    return re.sub(r"\s*[:{]\s*$", "", text).strip()


def parse_signal(text, line=0):
    """Parse the ``strategy.*(...)`` call inside ``text`` into a SignalCall."""
    m = _SIGNAL.search(text)
    if not m:
        return None
    call = parse_call(text[m.start():].strip())
    if call is None:
        return None
    name, args = call
    label = _unquote(args[0]) if args else None
    if name == "strategy.entry":
        direction = args[1] if len(args) > 1 else ""
        kind = SignalKind.OPEN_SHORT if "strategy.short" in direction else SignalKind.OPEN_LONG
        return SignalCall(line, kind, label)
    if name == "strategy.close":
        kind = SignalKind.CLOSE_SHORT if re.search("short", label or "", re.I) else SignalKind.CLOSE_LONG
        return SignalCall(line, kind, label)
    if name in ("strategy.exit", "strategy.close_all"):
        return SignalCall(line, SignalKind.CLOSE_ANY, label)
    return None


def _parse_simple(item):
    text = item.text
    if _SIGNAL.search(text):
        return parse_signal(text, item.number)

    m = _DESTRUCTURE.match(text)
    if m:
        names = tuple(n.strip() for n in m.group(1).split(","))
        args = tuple(split_args(m.group(3)))
        return MultiAssignment(item.number, names, Builtin(m.group(2)), args)

    m = _ASSIGN.match(text)
    if m:
        rhs = m.group(2).strip()
        source = _SOURCE_INPUT.match(rhs)
        if source:
            # a source input binds its default series
            args = split_args(source.group(1))
            return Assignment(item.number, m.group(1), args[0]) if args else None
        if _DECLARATION.match(rhs):
            return None
        return Assignment(item.number, m.group(1), rhs)
    return None


def _parse_block(items, pos, floor):
    statements = []
    while pos < len(items) and items[pos].indent > floor:
        item = items[pos]
        m = _IF.match(item.text)
        if m:
            stmt, pos = _parse_if(items, pos, m.group(1))
        else:
            stmt = _parse_simple(item)
            pos += 1
        if stmt is not None:
            statements.append(stmt)
    return statements, pos


def _parse_if(items, pos, condition):
    head = items[pos]
    body, pos = _parse_block(items, pos + 1, head.indent)
    branches = [Branch(head.number, _clean_condition(condition), tuple(body))]
    else_body = ()
    while pos < len(items) and items[pos].indent == head.indent:
        item = items[pos]
        m = _ELSE_IF.match(item.text)
        if m:
            body, pos = _parse_block(items, pos + 1, head.indent)
            branches.append(Branch(item.number, _clean_condition(m.group(1)), tuple(body)))
            continue
        if _ELSE.match(item.text):
            body, pos = _parse_block(items, pos + 1, head.indent)
            else_body = tuple(body)
        break
    return IfStatement(head.number, tuple(branches), else_body), pos


def parse_script(code):
    """Script text → list of statements.

    Blank lines, comments, ``input`` declarations, the ``strategy(...)``
    declaration and lines of no recognised form (``plot(...)`` etc.) produce
    no statement.
    """
    statements, _ = _parse_block(_lines(code), 0, -1)
    return statements


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

ALWAYS = "always"


@dataclass
class ScriptRun:
    bindings: dict
    conditions: dict
    signals: list = field(default_factory=list)
    unresolved: list = field(default_factory=list)
    skipped: list = field(default_factory=list)


def _param_value(value):
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    return value


def seed_environment(prices, params=None):
    """Price series, ``true``/``false`` and every parameter as a scalar."""
    env = {
        "open": prices.open,
        "high": prices.high,
        "low": prices.low,
        "close": prices.close,
        "volume": prices.volume,
        "hl2": (prices.high + prices.low) / 2,
        "hlc3": (prices.high + prices.low + prices.close) / 3,
        "ohlc4": (prices.open + prices.high + prices.low + prices.close) / 4,
        "true": True,
        "false": False,
    }
    for name, value in (params or {}).items():
        env[name] = _param_value(value)
    return env


class _Executor:
    def __init__(self, prices, params):
        self.length = len(prices)
        self.env = seed_environment(prices, params)
        self.evaluator = Evaluator(self.env, self.length)
        self.run = ScriptRun(
            bindings=self.env,
            conditions={ALWAYS: np.ones(self.length, dtype=bool)},
        )
        self._cond_count = 0

    def block(self, statements, guard=None):
        for stmt in statements:
            if isinstance(stmt, SignalCall):
                name = ALWAYS if guard is None else guard
                self.run.signals.append(Signal(stmt.kind, name, stmt.label))
            elif isinstance(stmt, IfStatement):
                self.if_chain(stmt, guard)
            elif guard is not None:
                self.run.skipped.append(stmt.line)
            elif isinstance(stmt, MultiAssignment):
                self.multi_assign(stmt)
            else:
                self.assign(stmt)

    def assign(self, stmt):
        try:
            self.env[stmt.name] = self.evaluator.evaluate(stmt.expr)
        except UnresolvedExpression:
            self.run.unresolved.append(stmt.line)

    def multi_assign(self, stmt):
        try:
            outputs = self.evaluator.call_multi(stmt.builtin.value, list(stmt.args))
        except UnresolvedExpression:
            self.run.unresolved.append(stmt.line)
            return
        for name, series in zip(stmt.names, outputs):
            self.env[name] = series

    def condition(self, branch):
        try:
            value = self.evaluator.boolean(self.evaluator.evaluate(branch.condition))
        except UnresolvedExpression:
            value = None
        if value is None:
            self.run.unresolved.append(branch.line)
            return np.zeros(self.length, dtype=bool)
        return value

    def register(self, series):
        name = f"cond_{self._cond_count}"
        self._cond_count += 1
        self.run.conditions[name] = series
        return name

    def if_chain(self, stmt, guard):
        parent = self.run.conditions[guard] if guard is not None else None
        taken = np.zeros(self.length, dtype=bool)
        for branch in stmt.branches:
            cond = self.condition(branch)
            active = cond & ~taken
            if parent is not None:
                active &= parent
            taken |= cond
            self.block(branch.body, self.register(active))
        if stmt.else_body:
            active = ~taken if parent is None else parent & ~taken
            self.block(stmt.else_body, self.register(active))


def execute(statements, prices, params=None):
    """Run parsed statements against ``prices`` (a PriceData) with ``params``."""
    executor = _Executor(prices, params)
    executor.block(statements)
    return executor.run


def run_script(code, prices, params=None):
    return execute(parse_script(code), prices, params)


DUAL_MA_EXAMPLE = """\
//@version=5
strategy("Dual MA Crossover", overlay=true, default_qty_type=strategy.percent_of_equity, default_qty_value=100)

// === Parameters ===
fastLength = input.int(9, "Fast MA Period", minval=2, maxval=100, step=1)
slowLength = input.int(21, "Slow MA Period", minval=5, maxval=300, step=1)
maType = input.string("EMA", "MA Type", options=["SMA", "EMA", "WMA"])
stopLossPct = input.float(2.0, "Stop Loss %", minval=0.1, maxval=20.0, step=0.1)

// === Calculations ===
fastMA = maType == "SMA" ? ta.sma(close, fastLength) : maType == "EMA" ? ta.ema(close, fastLength) : ta.wma(close, fastLength)
slowMA = maType == "SMA" ? ta.sma(close, slowLength) : maType == "EMA" ? ta.ema(close, slowLength) : ta.wma(close, slowLength)

// === Entry/Exit Signals ===
longCondition  = ta.crossover(fastMA, slowMA)
shortCondition = ta.crossunder(fastMA, slowMA)

if longCondition
    strategy.entry("Long", strategy.long)

if shortCondition
    strategy.close("Long")

// === Plots ===
plot(fastMA, color=color.new(color.blue, 0), linewidth=2, title="Fast MA")
plot(slowMA, color=color.new(color.red, 0), linewidth=2, title="Slow MA")
"""
