"""
Token supply time series: supply change events, rolling-window anomaly
bands and summary metrics.

All arithmetic on supplies is Decimal, so a series that never changes has
zero deviation everywhere and is never flagged.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from tracescope.config import settings
from tracescope.core.enums import SupplyEventType, SupplyTrend
from tracescope.core.models import (
    SupplyAnalysis,
    SupplyDataPoint,
    SupplyEvent,
    SupplyMetrics,
    SupplyTrendPoint,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
STABLE_SLOPE_RATIO = 0.01
VOLATILE_CV = 0.3


def parse_supply_value(raw: Any) -> Optional[int]:
    """Raw supply as int; accepts ints, 0x-hex and decimal strings. None if unparsable."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        return raw
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    try:
        if s[:2].lower() == "0x":
            return int(s, 16) if len(s) > 2 else 0
        return int(s)
    except ValueError:
        return None


def _mean(values: Sequence[Decimal]) -> Decimal:
    return sum(values, ZERO) / len(values)


def _pstdev(values: Sequence[Decimal], mean: Decimal) -> Decimal:
    if len(values) < 2:
        return ZERO
    return (sum(((v - mean) ** 2 for v in values), ZERO) / len(values)).sqrt()


def _growth(previous: Decimal, current: Decimal) -> Decimal:
    if previous <= 0:
        return ZERO
    return (current - previous) / previous * HUNDRED


def window_size(n: int) -> int:
    return max(1, min(settings.SUPPLY_MAX_WINDOW, n // 5))


def _classify(previous: Decimal, current: Decimal) -> SupplyEventType:
    if previous == 0 or current == 0:
        # storage slot set from zero or cleared to zero
        return SupplyEventType.TRANSFER
    if current > previous:
        return SupplyEventType.MINT
    return SupplyEventType.BURN


def detect_supply_events(
    points: Sequence[SupplyDataPoint],
    anomaly_threshold: Union[Decimal, float, str] = settings.SUPPLY_ANOMALY_THRESHOLD,
    decimals: int = settings.TOKEN_DECIMALS,
) -> List[SupplyEvent]:
    """
    One event per pair of consecutive points whose value changed.

    An event is anomalous when its amount is more than anomaly_threshold
    standard deviations from the mean amount of all events.
    """
    k = Decimal(str(anomaly_threshold))
    unit = Decimal(10) ** decimals
    drafts: List[Tuple[SupplyDataPoint, SupplyEventType, Decimal, Decimal, Decimal]] = []

    for prev, cur in zip(points, points[1:]):
        if prev.raw_value == cur.raw_value:
            continue
        prev_raw = parse_supply_value(prev.raw_value)
        cur_raw = parse_supply_value(cur.raw_value)
        if prev_raw is None or cur_raw is None:
            before = Decimal(prev_raw) / unit if prev_raw is not None else ZERO
            after = Decimal(cur_raw) / unit if cur_raw is not None else ZERO
            drafts.append((cur, SupplyEventType.UNKNOWN, ZERO, before, after))
            continue
        if prev_raw == cur_raw:
            continue
        before = Decimal(prev_raw) / unit
        after = Decimal(cur_raw) / unit
        drafts.append((cur, _classify(before, after), abs(after - before), before, after))

    if not drafts:
        return []

    amounts = [d[2] for d in drafts]
    mean = _mean(amounts)
    sigma = _pstdev(amounts, mean)

    return [
        SupplyEvent(
            block_number=point.block_number,
            timestamp=point.timestamp,
            event_type=event_type,
            amount=amount,
            previous_supply=before,
            new_supply=after,
            growth_rate_percent=_growth(before, after),
            is_anomaly=abs(amount - mean) > k * sigma,
        )
        for point, event_type, amount, before, after in drafts
    ]


def _trend(supplies: Sequence[Decimal]) -> Tuple[SupplyTrend, float]:
    """Least-squares line over the series; strength is R^2 clipped to [0, 1]."""
    n = len(supplies)
    if n < 2:
        return SupplyTrend.STABLE, 0.0

    y = [float(v) for v in supplies]
    sum_x = n * (n - 1) / 2
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(y)
    sum_xy = sum(i * v for i, v in enumerate(y))

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    mean = sum_y / n
    ss_total = sum((v - mean) ** 2 for v in y)
    if ss_total == 0:
        return SupplyTrend.STABLE, 0.0
    ss_res = sum((v - (slope * i + intercept)) ** 2 for i, v in enumerate(y))
    r_squared = 1 - ss_res / ss_total

    if abs(slope) < abs(mean) * STABLE_SLOPE_RATIO:
        trend = SupplyTrend.STABLE
    elif slope > 0:
        trend = SupplyTrend.INCREASING
    else:
        trend = SupplyTrend.DECREASING

    if mean != 0 and (ss_total / n) ** 0.5 / abs(mean) > VOLATILE_CV:
        trend = SupplyTrend.VOLATILE

    return trend, max(0.0, min(1.0, r_squared))


def analyze_supply_history(
    points: Sequence[SupplyDataPoint],
    anomaly_threshold: Union[Decimal, float, str] = settings.SUPPLY_ANOMALY_THRESHOLD,
    decimals: int = settings.TOKEN_DECIMALS,
) -> SupplyAnalysis:
    """
    Trend points with a trailing moving average and +/- k sigma band,
    change events and summary metrics.

    Points whose value cannot be parsed stay out of the trend line and
    produce "unknown" events.
    """
    if not points:
        return SupplyAnalysis()

    ordered = sorted(points, key=lambda p: p.block_number)
    k = Decimal(str(anomaly_threshold))
    unit = Decimal(10) ** decimals
    analysis = SupplyAnalysis()

    parsed: List[Tuple[SupplyDataPoint, Decimal]] = []
    for p in ordered:
        raw = parse_supply_value(p.raw_value)
        if raw is None:
            analysis.warnings.append(f"block {p.block_number}: unparsable supply value {p.raw_value!r}")
            continue
        parsed.append((p, Decimal(raw) / unit))

    analysis.events = detect_supply_events(ordered, k, decimals)
    event_by_block: Dict[int, SupplyEventType] = {e.block_number: e.event_type for e in analysis.events}

    supplies = [s for _, s in parsed]
    size = window_size(len(parsed))
    analysis.window_size = size

    for i, (point, supply) in enumerate(parsed):
        window = supplies[max(0, i - size + 1): i + 1]
        avg = _mean(window)
        sigma = _pstdev(window, avg)
        upper = avg + k * sigma
        lower = avg - k * sigma
        analysis.trend.append(
            SupplyTrendPoint(
                block_number=point.block_number,
                timestamp=point.timestamp,
                supply=supply,
                growth_rate_percent=_growth(supplies[i - 1], supply) if i > 0 else ZERO,
                moving_average=avg,
                upper_bound=upper,
                lower_bound=lower,
                is_anomaly=supply > upper or supply < lower,
                event_type=event_by_block.get(point.block_number),
            )
        )

    analysis.metrics = _metrics(analysis.events, supplies)
    logger.debug(
        "supply history: %d points, %d events, window %d",
        len(parsed), len(analysis.events), size,
    )
    return analysis


def _metrics(events: Sequence[SupplyEvent], supplies: Sequence[Decimal]) -> SupplyMetrics:
    metrics = SupplyMetrics()
    if supplies:
        mean = _mean(supplies)
        metrics.max_supply = max(supplies)
        metrics.min_supply = min(supplies)
        metrics.volatility = _pstdev(supplies, mean)
        metrics.trend, metrics.trend_strength = _trend(supplies)

    if events:
        metrics.total_minted = sum((e.amount for e in events if e.event_type is SupplyEventType.MINT), ZERO)
        metrics.total_burned = sum((e.amount for e in events if e.event_type is SupplyEventType.BURN), ZERO)
        metrics.net_change = metrics.total_minted - metrics.total_burned
        metrics.average_growth_rate = _mean([e.growth_rate_percent for e in events])
        metrics.anomaly_count = sum(1 for e in events if e.is_anomaly)
    return metrics
