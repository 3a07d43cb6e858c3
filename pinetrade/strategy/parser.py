"""Strategy descriptor extraction — script text to ``StrategyConfig``.

Parameters are pulled out of free-form (Pine-Script-like) text by a fixed
list of named extraction rules.  Each rule looks for one parameter and
reports ``RuleMatch(found, value)``; rules are applied left to right over
the documented defaults.  Extraction never raises: a parameter that is
absent, malformed, or out of range simply keeps its default.
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

from pinetrade.strategy.models import EntryType, MAType, StrategyConfig


DEFAULT_RSI_OVERBOUGHT = 70.0
DEFAULT_RSI_OVERSOLD = 30.0


@dataclass(frozen=True)
class RuleMatch:
    """Result of one extraction rule."""

    found: bool
    value: Any = None


_MISS = RuleMatch(False)


@dataclass(frozen=True)
class ExtractionRule:
    """A named rule: ``extract`` finds a value, ``apply`` folds it in."""

    name: str
    extract: Callable[[str], RuleMatch]
    apply: Callable[[StrategyConfig, Any], StrategyConfig]


# ── Pattern helpers ──────────────────────────────────────────────────────


def _assignment_patterns(name: str, input_fn: str, number: str) -> list[re.Pattern]:
    """``name = input.<fn>(N`` first, then a bare ``name = N``."""
    return [
        re.compile(rf"{name}\s*=\s*input\.{input_fn}\(\s*({number})", re.IGNORECASE),
        re.compile(rf"{name}\s*=\s*({number})", re.IGNORECASE),
    ]


_INT = r"\d+"
_FLOAT = r"\d+(?:\.\d+)?"

_FAST_PATTERNS = _assignment_patterns(r"fast(?:Length|MA|Period)", "int", _INT)
_SLOW_PATTERNS = _assignment_patterns(r"slow(?:Length|MA|Period)", "int", _INT)
_STOP_PATTERNS = _assignment_patterns(
    r"stop(?:Loss|_loss)(?:Percent|Pct|_pct)?", "float", _FLOAT
)
_TAKE_PATTERNS = _assignment_patterns(
    r"take(?:Profit|_profit)(?:Percent|Pct|_pct)?", "float", _FLOAT
)
_RSI_PERIOD = re.compile(
    r"rsi(?:Length|Period)\s*=\s*(?:input\.int\(\s*)?(\d+)", re.IGNORECASE
)
_OVERBOUGHT = re.compile(
    r"overbought\s*=\s*(?:input\.(?:int|float)\(\s*)?(\d+(?:\.\d+)?)", re.IGNORECASE
)
_OVERSOLD = re.compile(
    r"oversold\s*=\s*(?:input\.(?:int|float)\(\s*)?(\d+(?:\.\d+)?)", re.IGNORECASE
)


def _first_match(text: str, patterns: list[re.Pattern]) -> Optional[str]:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m.group(1)
    return None


def _period_rule(patterns: list[re.Pattern]) -> Callable[[str], RuleMatch]:
    def extract(text: str) -> RuleMatch:
        raw = _first_match(text, patterns)
        if raw is None:
            return _MISS
        value = int(raw)
        if value < 1:
            return _MISS
        return RuleMatch(True, value)

    return extract


def _percent_rule(patterns: list[re.Pattern]) -> Callable[[str], RuleMatch]:
    def extract(text: str) -> RuleMatch:
        raw = _first_match(text, patterns)
        if raw is None:
            return _MISS
        value = float(raw)
        if value < 0:
            return _MISS
        return RuleMatch(True, value)

    return extract


# ── Rules ────────────────────────────────────────────────────────────────


extract_fast_period = _period_rule(_FAST_PATTERNS)
extract_slow_period = _period_rule(_SLOW_PATTERNS)
extract_stop_loss_pct = _percent_rule(_STOP_PATTERNS)
extract_take_profit_pct = _percent_rule(_TAKE_PATTERNS)


def extract_ma_type(text: str) -> RuleMatch:
    """``ta.sma`` or a bare ``sma(`` call switches the MA type to SMA."""
    if "ta.sma" in text or "sma(" in text:
        return RuleMatch(True, MAType.SMA)
    return _MISS


def extract_cross_direction(text: str) -> RuleMatch:
    """``crossunder`` wins over ``crossover`` when both appear."""
    if "crossunder" in text:
        return RuleMatch(True, EntryType.MA_CROSSUNDER)
    if "crossover" in text:
        return RuleMatch(True, EntryType.MA_CROSSOVER)
    return _MISS


def extract_rsi(text: str) -> RuleMatch:
    """An RSI period assignment makes this an RSI strategy.

    Returns ``(period, overbought, oversold)`` with thresholds defaulted
    to 70 / 30 when not assigned.
    """
    m = _RSI_PERIOD.search(text)
    if not m:
        return _MISS
    period = int(m.group(1))
    if period < 1:
        return _MISS

    ob = _OVERBOUGHT.search(text)
    os_ = _OVERSOLD.search(text)
    overbought = float(ob.group(1)) if ob else DEFAULT_RSI_OVERBOUGHT
    oversold = float(os_.group(1)) if os_ else DEFAULT_RSI_OVERSOLD
    return RuleMatch(True, (period, overbought, oversold))


def _apply_rsi(cfg: StrategyConfig, value: tuple) -> StrategyConfig:
    period, overbought, oversold = value
    return replace(
        cfg,
        entry_type=EntryType.RSI,
        rsi_period=period,
        rsi_overbought=overbought,
        rsi_oversold=oversold,
    )


# Order matters: the RSI rule runs after the cross-direction rule so a
# detected RSI period always forces ``entry_type=RSI``.
RULES: list[ExtractionRule] = [
    ExtractionRule("fast_period", extract_fast_period,
                   lambda c, v: replace(c, fast_period=v)),
    ExtractionRule("slow_period", extract_slow_period,
                   lambda c, v: replace(c, slow_period=v)),
    ExtractionRule("stop_loss_pct", extract_stop_loss_pct,
                   lambda c, v: replace(c, stop_loss_pct=v)),
    ExtractionRule("take_profit_pct", extract_take_profit_pct,
                   lambda c, v: replace(c, take_profit_pct=v)),
    ExtractionRule("ma_type", extract_ma_type,
                   lambda c, v: replace(c, ma_type=v)),
    ExtractionRule("entry_type", extract_cross_direction,
                   lambda c, v: replace(c, entry_type=v)),
    ExtractionRule("rsi", extract_rsi, _apply_rsi),
]


def parse_strategy(text: Optional[str]) -> StrategyConfig:
    """Derive a ``StrategyConfig`` from raw strategy text.

    Args:
        text: Free-form strategy source.  ``None`` or empty text yields
              the default config.

    Returns:
        A config with every recognised parameter overridden and every
        other field at its default.
    """
    config = StrategyConfig()
    if not isinstance(text, str) or not text:
        return config

    for rule in RULES:
        match = rule.extract(text)
        if match.found:
            config = rule.apply(config, match.value)
    return config
