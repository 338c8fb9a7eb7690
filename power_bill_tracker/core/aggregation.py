"""
Dashboard aggregation over billing records.

Pure functions of an in-memory record collection; no I/O. Every view is
recomputed from the same snapshot by `build_dashboard` so the views stay
consistent with each other within one report.

Money is summed as Decimal. Percentages are returned unrounded; rounding
happens only when a value is rendered as text.
"""

import calendar
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from power_bill_tracker.storage.models import BillingRecord

# kgCO2e per unit of electricity
CARBON_FACTOR = Decimal("0.4999")
UNKNOWN_METER = "Unknown"
ZERO = Decimal("0")

DEFAULT_INSIGHT_MESSAGE = "Start saving energy today!"


class InsightKind(Enum):
    """Tone of the trend insight."""
    NEUTRAL = "neutral"
    INCREASE = "increase"
    DECREASE = "decrease"  # below previous month
    IMPROVEMENT = "improvement"  # below same month last year


class ComparisonBasis(Enum):
    """Period the latest period was compared against."""
    YEAR_OVER_YEAR = "year_over_year"
    PREVIOUS_MONTH = "previous_month"


@dataclass(frozen=True)
class LatestPeriod:
    """Totals across all meters for the most recent billing period."""
    month: int
    year: int
    total_cost: Decimal
    usage_units: Decimal

    @property
    def label(self) -> str:
        return month_label(self.month, self.year)


@dataclass(frozen=True)
class TrendInsight:
    """Classified comparison of the latest period's cost."""
    kind: InsightKind
    message: str
    percent: Optional[Decimal] = None
    basis: Optional[ComparisonBasis] = None


@dataclass(frozen=True)
class YearlyTotal:
    year: int
    total: Decimal


@dataclass(frozen=True)
class MonthlyComparisonRow:
    """One calendar month with each year's total cost."""
    month: int
    label: str
    totals: Dict[int, Decimal]


@dataclass(frozen=True)
class MeterPeriod:
    """Cost per meter in one (year, month) period."""
    sort_key: str  # "YYYY-MM"
    label: str
    year: int
    month: int
    by_meter: Dict[str, Decimal]

    @property
    def total(self) -> Decimal:
        return sum(self.by_meter.values(), ZERO)


@dataclass(frozen=True)
class MeterHistory:
    """Per-meter monthly history; every period carries every meter."""
    meters: List[str]
    periods: List[MeterPeriod]


@dataclass(frozen=True)
class MonthBreakdownRow:
    """Cost per meter for the selected month in one year."""
    year: int
    by_meter: Dict[str, Decimal]

    @property
    def total(self) -> Decimal:
        return sum(self.by_meter.values(), ZERO)


@dataclass(frozen=True)
class DashboardSnapshot:
    """All aggregate views derived from one record snapshot."""
    latest: Optional[LatestPeriod]
    carbon_kg: Decimal
    insight: TrendInsight
    month_over_month: Optional[Decimal]
    yearly_totals: List[YearlyTotal]
    monthly_comparison: List[MonthlyComparisonRow]
    meter_history: MeterHistory
    total_cost: Decimal
    record_count: int
    average_cost_per_bill: Optional[Decimal]
    selected_month: Optional[int] = None
    month_breakdown: List[MonthBreakdownRow] = field(default_factory=list)


def month_label(month: int, year: Optional[int] = None) -> str:
    """Abbreviated English month name, e.g. "Mar" or "Mar 2024"."""
    name = calendar.month_abbr[month]
    return f"{name} {year}" if year is not None else name


def previous_period(month: int, year: int) -> Tuple[int, int]:
    """The calendar month before (month, year), rolling back across January."""
    if month == 1:
        return 12, year - 1
    return month - 1, year


def percent_change(current: Decimal, prior: Decimal) -> Optional[Decimal]:
    """(current - prior) / prior * 100, or None when prior is zero."""
    if prior == 0:
        return None
    return (current - prior) / prior * 100


def carbon_estimate(usage_units: Decimal) -> Decimal:
    """Estimated kgCO2e for an amount of electricity."""
    return usage_units * CARBON_FACTOR


def latest_period(records: Sequence[BillingRecord]) -> Optional[LatestPeriod]:
    """Sum cost and usage over every meter in the most recent period."""
    if not records:
        return None
    newest = max(records, key=lambda r: (r.year, r.month))
    in_period = _in_period(records, newest.month, newest.year)
    return LatestPeriod(
        month=newest.month,
        year=newest.year,
        total_cost=sum((r.total_cost for r in in_period), ZERO),
        usage_units=sum((r.usage_units for r in in_period), ZERO),
    )


def month_over_month(records: Sequence[BillingRecord]) -> Optional[Decimal]:
    """Percent change of the latest period's cost against the previous month.

    Returns None when there is no latest period, no record for the previous
    month, or the previous month cost nothing.
    """
    latest = latest_period(records)
    if latest is None:
        return None
    prior = _period_cost(records, *previous_period(latest.month, latest.year))
    if prior is None:
        return None
    return percent_change(latest.total_cost, prior)


def trend_insight(records: Sequence[BillingRecord]) -> TrendInsight:
    """Compare the latest period against last year, else the previous month.

    The same month a year earlier takes priority. The previous calendar
    month is used only when last year has no record for that month. A zero
    prior cost on the chosen basis gives a neutral insight.
    """
    neutral = TrendInsight(kind=InsightKind.NEUTRAL, message=DEFAULT_INSIGHT_MESSAGE)
    latest = latest_period(records)
    if latest is None:
        return neutral

    last_year = _period_cost(records, latest.month, latest.year - 1)
    if last_year is not None:
        percent = percent_change(latest.total_cost, last_year)
        if percent is None:
            return neutral
        if percent > 0:
            return TrendInsight(
                kind=InsightKind.INCREASE,
                message=f"Electricity cost up {percent:.1f}% compared with the same month last year",
                percent=percent,
                basis=ComparisonBasis.YEAR_OVER_YEAR,
            )
        return TrendInsight(
            kind=InsightKind.IMPROVEMENT,
            message=f"Great work! You saved {abs(percent):.1f}% compared with last year",
            percent=percent,
            basis=ComparisonBasis.YEAR_OVER_YEAR,
        )

    last_month = _period_cost(records, *previous_period(latest.month, latest.year))
    if last_month is None:
        return neutral
    percent = percent_change(latest.total_cost, last_month)
    if percent is None:
        return neutral
    if percent > 0:
        return TrendInsight(
            kind=InsightKind.INCREASE,
            message=f"Electricity cost up {percent:.1f}% from last month",
            percent=percent,
            basis=ComparisonBasis.PREVIOUS_MONTH,
        )
    return TrendInsight(
        kind=InsightKind.DECREASE,
        message=f"Electricity cost down {abs(percent):.1f}% from last month",
        percent=percent,
        basis=ComparisonBasis.PREVIOUS_MONTH,
    )


def yearly_totals(records: Iterable[BillingRecord]) -> List[YearlyTotal]:
    """Total cost per year, ascending by year."""
    totals: Dict[int, Decimal] = {}
    for record in records:
        totals[record.year] = totals.get(record.year, ZERO) + record.total_cost
    return [YearlyTotal(year=year, total=totals[year]) for year in sorted(totals)]


def monthly_comparison(records: Sequence[BillingRecord]) -> List[MonthlyComparisonRow]:
    """January to December, each with every year's total for that month.

    Years without a record for a month get zero.
    """
    years = sorted({r.year for r in records})
    totals: Dict[Tuple[int, int], Decimal] = {}
    for record in records:
        key = (record.month, record.year)
        totals[key] = totals.get(key, ZERO) + record.total_cost

    return [
        MonthlyComparisonRow(
            month=month,
            label=month_label(month),
            totals={year: totals.get((month, year), ZERO) for year in years},
        )
        for month in range(1, 13)
    ]


def meter_codes(records: Iterable[BillingRecord]) -> List[str]:
    """Distinct meter codes in first-seen order; blank codes become "Unknown"."""
    return list(dict.fromkeys(_meter_of(r) for r in records))


def meter_history(records: Sequence[BillingRecord]) -> MeterHistory:
    """Cost per meter for every period, ascending by (year, month)."""
    meters = meter_codes(records)
    periods: Dict[str, MeterPeriod] = {}
    for record in records:
        key = f"{record.year}-{record.month:02d}"
        if key not in periods:
            periods[key] = MeterPeriod(
                sort_key=key,
                label=month_label(record.month, record.year),
                year=record.year,
                month=record.month,
                by_meter={meter: ZERO for meter in meters},
            )
        by_meter = periods[key].by_meter
        by_meter[_meter_of(record)] += record.total_cost

    return MeterHistory(meters=meters, periods=[periods[k] for k in sorted(periods)])


def month_breakdown(
    records: Sequence[BillingRecord],
    month: int,
    meters: Optional[Sequence[str]] = None,
) -> List[MonthBreakdownRow]:
    """Cost per meter for one calendar month across years, ascending by year.

    Args:
        records: Full record snapshot
        month: Selected month number (1-12)
        meters: Meters to report; defaults to every meter in `records`

    Raises:
        ValueError: If month is outside 1-12
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12, got {month}")
    if meters is None:
        meters = meter_codes(records)

    by_year: Dict[int, Dict[str, Decimal]] = {}
    for record in records:
        if record.month != month:
            continue
        row = by_year.setdefault(record.year, {meter: ZERO for meter in meters})
        meter = _meter_of(record)
        row[meter] = row.get(meter, ZERO) + record.total_cost

    return [MonthBreakdownRow(year=year, by_meter=by_year[year]) for year in sorted(by_year)]


def build_dashboard(
    records: Iterable[BillingRecord],
    selected_month: Optional[int] = None,
) -> DashboardSnapshot:
    """Compute every dashboard view from one snapshot of records.

    Args:
        records: All billing records
        selected_month: Month for the single-month breakdown, if wanted

    Returns:
        DashboardSnapshot with all views
    """
    snapshot = tuple(records)
    latest = latest_period(snapshot)
    history = meter_history(snapshot)
    total_cost = sum((r.total_cost for r in snapshot), ZERO)

    return DashboardSnapshot(
        latest=latest,
        carbon_kg=carbon_estimate(latest.usage_units) if latest else ZERO,
        insight=trend_insight(snapshot),
        month_over_month=month_over_month(snapshot),
        yearly_totals=yearly_totals(snapshot),
        monthly_comparison=monthly_comparison(snapshot),
        meter_history=history,
        total_cost=total_cost,
        record_count=len(snapshot),
        average_cost_per_bill=total_cost / len(snapshot) if snapshot else None,
        selected_month=selected_month,
        month_breakdown=(
            month_breakdown(snapshot, selected_month, history.meters)
            if selected_month is not None
            else []
        ),
    )


def _meter_of(record: BillingRecord) -> str:
    return record.meter_code or UNKNOWN_METER


def _in_period(records: Iterable[BillingRecord], month: int, year: int) -> List[BillingRecord]:
    return [r for r in records if r.month == month and r.year == year]


def _period_cost(records: Sequence[BillingRecord], month: int, year: int) -> Optional[Decimal]:
    """Total cost for a period, or None when it has no records."""
    in_period = _in_period(records, month, year)
    if not in_period:
        return None
    return sum((r.total_cost for r in in_period), ZERO)
