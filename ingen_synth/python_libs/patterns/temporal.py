"""
Temporal patterns

Patterns whose values depend on time: growth over a range, seasonality around
peak periods, and business-hour / weekly activity windows.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np

from ingen_synth.python_libs.common.errors import ConfigurationError

from .base import BasePattern, PatternContext, parse_datetime

PERIOD_SECONDS = {
    "day": 86400,
    "week": 604800,
    "month": 2592000,
    "year": 31536000,
}

MONTHS = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]
WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def today() -> datetime:
    """Midnight of the current day, the default reference time."""
    return datetime.combine(date.today(), time())


def _weighted_index(weights: np.ndarray, u: float) -> int:
    cumulative = np.cumsum(weights)
    position = int(np.searchsorted(cumulative, u * cumulative[-1], side="right"))
    return min(position, len(weights) - 1)


class LinearGrowth(BasePattern):
    """Maps an index or timestamp into ``[start, end]`` with compounding growth.

    The position ``p`` in ``[0, 1)`` comes from ``index / total`` when the
    context carries both, from the timestamp's position inside
    ``window_start..window_end`` when configured, or from a uniform draw. It is
    passed through the inverse CDF of a density proportional to
    ``(1 + growth_rate) ** (periods * t)``, so a positive rate skews values
    toward ``end``. Bounds may be numbers or date/times.
    """

    name = "Linear Growth"
    description = "Generates values or timestamps that grow across a range"
    PARAMETERS = {
        "start": {"type": "float|datetime", "default": 0.0, "description": "Range start"},
        "end": {"type": "float|datetime", "default": 100.0, "description": "Range end"},
        "growth_rate": {"type": "float", "default": 0.0, "description": "Compounding rate per period, > -1"},
        "periods": {"type": "int", "default": 12, "description": "Number of compounding periods in the range"},
        "total": {"type": "int", "default": None, "description": "Expected record count for index positioning"},
        "window_start": {"type": "datetime", "default": None, "description": "Timestamp window start"},
        "window_end": {"type": "datetime", "default": None, "description": "Timestamp window end"},
        "variation": {"type": "float", "default": 0.0, "description": "Relative noise for numeric output, [0, 1)"},
        "min": {"type": "float", "default": None, "description": "Lower clamp for numeric output"},
        "max": {"type": "float", "default": None, "description": "Upper clamp for numeric output"},
        "precision": {"type": "int", "default": None, "description": "Decimals for numeric output"},
    }

    def initialize(self) -> None:
        start, end = self._config["start"], self._config["end"]
        self.temporal = not (isinstance(start, (int, float)) and isinstance(end, (int, float)))
        if self.temporal:
            self.start = parse_datetime(start, "start")
            self.end = parse_datetime(end, "end")
        else:
            self.start, self.end = float(start), float(end)
        if self.start >= self.end:
            raise ConfigurationError(f"{self.name}: start must be before end")
        self.growth_rate = self._number("growth_rate")
        if self.growth_rate <= -1:
            raise ConfigurationError(f"{self.name}: growth_rate must be greater than -1")
        self.periods = int(self._number("periods", positive=True))
        total = self._number("total", positive=True, optional=True)
        self.total = int(total) if total is not None else None
        self.window: Optional[Tuple[datetime, datetime]] = None
        if self._config.get("window_start") is not None or self._config.get("window_end") is not None:
            window_start = parse_datetime(self._config.get("window_start"), "window_start")
            window_end = parse_datetime(self._config.get("window_end"), "window_end")
            if window_start >= window_end:
                raise ConfigurationError(f"{self.name}: window_start must be before window_end")
            self.window = (window_start, window_end)
        self.variation = self._number("variation", non_negative=True)
        if self.variation >= 1:
            raise ConfigurationError(f"{self.name}: variation must be below 1")
        self.min = self._number("min", optional=True)
        self.max = self._number("max", optional=True)
        self._check_bounds(self.min, self.max)
        self.precision = self._precision()

    @property
    def numeric_output(self) -> bool:
        return not self.temporal

    def position(self, context: PatternContext) -> float:
        total = context.total or self.total
        if context.index is not None and total:
            slot = min(context.index, total - 1)
            return (slot + self.uniform(context)) / total
        if context.timestamp is not None and self.window is not None:
            window_start, window_end = self.window
            span = (window_end - window_start).total_seconds()
            offset = (context.timestamp - window_start).total_seconds()
            return self.clamp(offset / span, 0.0, 1.0)
        return self.uniform(context)

    def growth_fraction(self, p: float) -> float:
        """Inverse CDF of the compounding growth density on [0, 1]."""
        if self.growth_rate == 0 or p <= 0 or p >= 1:
            return self.clamp(p, 0.0, 1.0)
        log_rate = self.periods * math.log1p(self.growth_rate)
        if log_rate > 0:
            # Log-space form; (1 + g) ** periods overflows for long horizons
            return 1 + math.log(p + (1 - p) * math.exp(-log_rate)) / log_rate
        return math.log1p(p * math.expm1(log_rate)) / log_rate

    def generate(self, context: Any = None) -> Union[float, datetime]:
        ctx = PatternContext.coerce(context)
        t = self.growth_fraction(self.position(ctx))
        if self.temporal:
            return self.start + (self.end - self.start) * t
        value = self.start + (self.end - self.start) * t
        if self.variation:
            value *= self.uniform(ctx, 1 - self.variation, 1 + self.variation)
        value = self.clamp(value, self.min, self.max)
        return round(value, self.precision) if self.precision is not None else value


class SeasonalPattern(BasePattern):
    """``base + amplitude * cos(2π · distance to nearest peak)`` plus trend.

    An ``amplitude`` below 1 is read as a fraction of ``base_value``.
    """

    name = "Seasonal Pattern"
    description = "Generates values with seasonal variations"
    PARAMETERS = {
        "base_value": {"type": "float", "default": 100.0, "description": "Base value around which variation occurs"},
        "amplitude": {"type": "float", "default": 20.0, "description": "Amplitude of seasonal variation"},
        "period": {"type": "string", "default": "year", "description": "Period of seasonality (day, week, month, year)"},
        "peaks": {"type": "array", "default": ["december", "july"], "description": "Peak periods"},
        "trend_rate": {"type": "float", "default": 0.0, "description": "Trend per elapsed period"},
        "noise": {"type": "float", "default": 0.02, "description": "Relative multiplicative noise"},
        "base_time": {"type": "datetime", "default": None, "description": "Reference time for trend and index positioning"},
        "index_step_hours": {"type": "float", "default": 24.0, "description": "Hours between consecutive record indexes"},
        "min": {"type": "float", "default": None, "description": "Lower clamp"},
        "max": {"type": "float", "default": None, "description": "Upper clamp"},
    }

    def initialize(self) -> None:
        self.base_value = self._number("base_value")
        self.amplitude = self._number("amplitude", non_negative=True)
        self.period = str(self._config["period"]).lower()
        if self.period not in PERIOD_SECONDS:
            raise ConfigurationError(f"{self.name}: period must be one of {', '.join(PERIOD_SECONDS)}")
        self.trend_rate = self._number("trend_rate")
        self.noise = self._number("noise", non_negative=True)
        if self.noise >= 1:
            raise ConfigurationError(f"{self.name}: noise must be below 1")
        base_time = self._config.get("base_time")
        self.base_time = parse_datetime(base_time, "base_time") if base_time is not None else today()
        self.index_step = timedelta(hours=self._number("index_step_hours", positive=True))
        self.min = self._number("min", optional=True)
        self.max = self._number("max", optional=True)
        self._check_bounds(self.min, self.max)
        self.peak_positions = self._peak_positions(self._config.get("peaks") or [])

    def _peak_positions(self, peaks: Sequence[Any]) -> List[float]:
        positions = []
        for peak in peaks:
            position = self._peak_position(peak)
            if position is None:
                raise ConfigurationError(f"{self.name}: peak {peak!r} is not valid for period {self.period}")
            positions.append(position)
        return positions or [0.5]

    def _peak_position(self, peak: Any) -> Optional[float]:
        name = str(peak).lower()
        if self.period == "day":
            return float(peak) / 24 if _is_number(peak) else None
        if self.period == "week":
            if name in WEEKDAYS:
                return WEEKDAYS.index(name) / 7
            return (float(peak) - 1) / 7 if _is_number(peak) else None
        if self.period == "month":
            return (float(peak) - 1) / 30 if _is_number(peak) else None
        if name in MONTHS:
            return MONTHS.index(name) / 12
        return (float(peak) - 1) / 12 if _is_number(peak) else None

    def position_in_period(self, timestamp: datetime) -> float:
        if self.period == "day":
            return (timestamp.hour * 3600 + timestamp.minute * 60 + timestamp.second) / 86400
        if self.period == "week":
            time_of_day = (timestamp.hour * 3600 + timestamp.minute * 60) / 86400
            return (timestamp.weekday() + time_of_day) / 7
        if self.period == "month":
            days_in_month = _days_in_month(timestamp.year, timestamp.month)
            return (timestamp.day - 1) / days_in_month
        days_in_year = 366 if _is_leap(timestamp.year) else 365
        return (timestamp.timetuple().tm_yday - 1) / days_in_year

    def seasonal_factor(self, timestamp: datetime) -> float:
        """Cosine of the wrap-around distance to the nearest peak: 1 at a peak, -1 opposite."""
        position = self.position_in_period(timestamp)
        distance = min(
            min(abs(position - peak), 1 - abs(position - peak)) for peak in self.peak_positions
        )
        return math.cos(2 * math.pi * distance)

    def trend(self, timestamp: datetime) -> float:
        if not self.trend_rate:
            return 0.0
        elapsed = (timestamp - self.base_time).total_seconds()
        return self.trend_rate * elapsed / PERIOD_SECONDS[self.period]

    def _timestamp_for(self, context: PatternContext) -> datetime:
        if context.timestamp is not None:
            return context.timestamp
        if context.index is not None:
            return self.base_time + self.index_step * context.index
        return self.base_time + timedelta(seconds=self.uniform(context) * PERIOD_SECONDS[self.period])

    def generate(self, context: Any = None) -> float:
        ctx = PatternContext.coerce(context)
        return self.generate_at(self._timestamp_for(ctx), ctx)

    def generate_at(self, timestamp: datetime, context: Any = None) -> float:
        ctx = PatternContext.coerce(context)
        amplitude = self.amplitude * self.base_value if self.amplitude < 1 else self.amplitude
        value = self.base_value + amplitude * self.seasonal_factor(timestamp) + self.trend(timestamp)
        if self.noise:
            value *= self.uniform(ctx, 1 - self.noise, 1 + self.noise)
        return self.clamp(value, self.min, self.max)

    def generate_series(self, start: datetime, end: datetime, interval: timedelta,
                        context: Any = None) -> List[Dict[str, Any]]:
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        ctx = PatternContext.coerce(context)
        series = []
        current = start
        while current <= end:
            series.append({"timestamp": current, "value": self.generate_at(current, ctx)})
            current += interval
        return series


class BusinessHours(BasePattern):
    """Timestamps restricted to working hours on weighted business days.

    With ``output="value"`` it instead scores the context timestamp: a peak,
    business or off-peak activity value with relative variation.
    """

    name = "Business Hours Pattern"
    description = "Generates timestamps within business hours, or activity values by time of day"
    PARAMETERS = {
        "output": {"type": "string", "default": "timestamp", "description": "'timestamp' or 'value'"},
        "start_date": {"type": "datetime", "default": None, "description": "Window start (default 30 days before base_time)"},
        "end_date": {"type": "datetime", "default": None, "description": "Window end (default base_time)"},
        "base_time": {"type": "datetime", "default": None, "description": "Reference time"},
        "business_hours": {"type": "dict", "default": {"start": 9, "end": 17}, "description": "Opening hours"},
        "business_days": {"type": "array", "default": [1, 2, 3, 4, 5], "description": "ISO weekdays (1=Monday)"},
        "weekday_weights": {"type": "dict", "default": None, "description": "ISO weekday -> weight"},
        "peak_hours": {"type": "array", "default": [12, 14, 16], "description": "Peak hours within business hours"},
        "peak_weight": {"type": "float", "default": 2.0, "description": "Relative weight of peak hours"},
        "peak_value": {"type": "float", "default": 100.0, "description": "Value during peak hours"},
        "off_peak_value": {"type": "float", "default": 10.0, "description": "Value outside business hours"},
        "timezone": {"type": "string", "default": "UTC", "description": "Timezone business hours are defined in"},
    }

    def initialize(self) -> None:
        self.output = str(self._config["output"]).lower()
        if self.output not in ("timestamp", "value"):
            raise ConfigurationError(f"{self.name}: output must be 'timestamp' or 'value'")
        hours = self._config["business_hours"] or {}
        self.open_hour = int(hours.get("start", 9))
        self.close_hour = int(hours.get("end", 17))
        if not 0 <= self.open_hour < self.close_hour <= 24:
            raise ConfigurationError(f"{self.name}: business hours must satisfy 0 <= start < end <= 24")
        self.business_days = [int(d) for d in self._config["business_days"]]
        if not self.business_days or any(d < 1 or d > 7 for d in self.business_days):
            raise ConfigurationError(f"{self.name}: business_days must be ISO weekdays 1-7")
        weights = self._config.get("weekday_weights") or {}
        self.weekday_weights = {
            day: float(weights.get(day, weights.get(str(day), 1.0))) for day in self.business_days
        }
        if any(w < 0 for w in self.weekday_weights.values()) or sum(self.weekday_weights.values()) <= 0:
            raise ConfigurationError(f"{self.name}: weekday weights must be non-negative with a positive sum")
        self.peak_hours = [float(h) for h in self._config["peak_hours"] or []]
        self.peak_weight = self._number("peak_weight", non_negative=True)
        self.peak_value = self._number("peak_value")
        self.off_peak_value = self._number("off_peak_value")
        try:
            self.timezone = ZoneInfo(str(self._config["timezone"]))
        except ZoneInfoNotFoundError as exc:
            raise ConfigurationError(f"{self.name}: unknown timezone {self._config['timezone']!r}") from exc

        base_time = self._config.get("base_time")
        self.base_time = parse_datetime(base_time, "base_time") if base_time is not None else today()
        end = self._config.get("end_date")
        start = self._config.get("start_date")
        self.end_date = parse_datetime(end, "end_date") if end is not None else self.base_time
        self.start_date = (
            parse_datetime(start, "start_date") if start is not None else self.end_date - timedelta(days=30)
        )
        if self.start_date >= self.end_date:
            raise ConfigurationError(f"{self.name}: start_date must be before end_date")

        self._days, self._day_weights, self._day_bounds = self._candidate_days()
        if self.output == "timestamp" and not self._days:
            raise ConfigurationError(f"{self.name}: no business day falls inside the window")
        self._hours = np.arange(self.open_hour, self.close_hour)
        self._hour_weights = np.array(
            [self.peak_weight if float(h) in self.peak_hours else 1.0 for h in self._hours]
        )
        if self._hour_weights.sum() <= 0:
            self._hour_weights = np.ones(len(self._hours))

    @property
    def numeric_output(self) -> bool:
        return self.output == "value"

    def _candidate_days(self) -> Tuple[List[date], np.ndarray, List[Tuple[int, int]]]:
        """Business days in the window with their open ``(from, to)`` seconds of day.

        The first and last day are cut to the part of the window they hold.
        """
        days, weights, bounds = [], [], []
        current = self.start_date.date()
        while current <= self.end_date.date():
            weight = self.weekday_weights.get(current.isoweekday(), 0.0)
            low, high = self.open_hour * 3600, self.close_hour * 3600
            if current == self.start_date.date():
                low = max(low, _seconds_of_day(self.start_date))
            if current == self.end_date.date():
                high = min(high, _seconds_of_day(self.end_date))
            if weight > 0 and low < high:
                days.append(current)
                weights.append(weight)
                bounds.append((low, high))
            current += timedelta(days=1)
        return days, np.array(weights, dtype=float), bounds

    def generate(self, context: Any = None) -> Union[datetime, float]:
        ctx = PatternContext.coerce(context)
        if self.output == "value":
            return self.generate_at(ctx.timestamp or self.base_time, ctx)
        return self.generate_timestamp(ctx)

    def generate_timestamp(self, context: Any = None) -> datetime:
        ctx = PatternContext.coerce(context)
        position = _weighted_index(self._day_weights, self.uniform(ctx))
        day = self._days[position]
        low, high = self._day_bounds[position]
        open_hours = (self._hours * 3600 < high) & ((self._hours + 1) * 3600 > low)
        weights = np.where(open_hours, self._hour_weights, 0.0)
        if weights.sum() <= 0:
            weights = open_hours.astype(float)
        hour = int(self._hours[_weighted_index(weights, self.uniform(ctx))])
        first, last = max(hour * 3600, low), min((hour + 1) * 3600, high)
        seconds = first + int(self.uniform(ctx) * (last - first))
        return datetime(day.year, day.month, day.day) + timedelta(seconds=seconds)

    def is_business_time(self, timestamp: datetime) -> bool:
        local = self._localize(timestamp)
        current = local.hour + local.minute / 60
        return local.isoweekday() in self.business_days and self.open_hour <= current < self.close_hour

    def generate_at(self, timestamp: datetime, context: Any = None) -> float:
        ctx = PatternContext.coerce(context)
        local = self._localize(timestamp)
        current = local.hour + local.minute / 60
        if not self.is_business_time(timestamp):
            return self.off_peak_value * self.uniform(ctx, 0.8, 1.2)
        if any(abs(current - peak) < 1 for peak in self.peak_hours):
            return self.peak_value * self.uniform(ctx, 0.9, 1.1)
        business_value = (self.peak_value + self.off_peak_value) / 2
        return business_value * self.uniform(ctx, 0.85, 1.15)

    def activity_level(self, timestamp: datetime, context: Any = None) -> float:
        """Value at ``timestamp`` scaled so off-peak is 0 and peak is 1."""
        spread = self.peak_value - self.off_peak_value
        if spread == 0:
            return 0.5
        return (self.generate_at(timestamp, context) - self.off_peak_value) / spread

    def _localize(self, timestamp: datetime) -> datetime:
        if timestamp.tzinfo is None:
            return timestamp
        return timestamp.astimezone(self.timezone)


class WeeklyPattern(BasePattern):
    """Timestamps weighted by day of week and hour of day."""

    name = "Weekly Pattern"
    description = "Generates timestamps following weekly activity patterns"
    PARAMETERS = {
        "weekday_weights": {
            "type": "dict",
            "default": {0: 0.6, 1: 1.0, 2: 1.0, 3: 1.0, 4: 1.0, 5: 0.9, 6: 0.7},
            "description": "Weights for each day of week (0=Sunday, 6=Saturday)",
        },
        "hourly_weights": {"type": "array", "default": None, "description": "24 weights, one per hour"},
        "start_date": {"type": "datetime", "default": None, "description": "Window start (default 7 days before end)"},
        "end_date": {"type": "datetime", "default": None, "description": "Window end (default now)"},
    }

    def initialize(self) -> None:
        raw = self._config["weekday_weights"] or {}
        self.weekday_weights = {day: float(raw.get(day, raw.get(str(day), 1.0))) for day in range(7)}
        hourly = self._config.get("hourly_weights")
        self.hourly_weights = [float(w) for w in hourly] if hourly is not None else [1.0] * 24
        if len(self.hourly_weights) != 24:
            raise ConfigurationError(f"{self.name}: hourly_weights needs 24 entries")
        for weights in (list(self.weekday_weights.values()), self.hourly_weights):
            if any(w < 0 for w in weights) or sum(weights) <= 0:
                raise ConfigurationError(f"{self.name}: weights must be non-negative with a positive sum")
        end = self._config.get("end_date")
        self.end_date = parse_datetime(end, "end_date") if end is not None else today()
        start = self._config.get("start_date")
        self.start_date = parse_datetime(start, "start_date") if start is not None else self.end_date - timedelta(days=7)
        if self.start_date >= self.end_date:
            raise ConfigurationError(f"{self.name}: start_date must be before end_date")
        self._days = []
        weights = []
        current = self.start_date.date()
        while current <= self.end_date.date():
            # Sunday-based index from Python's Monday-based weekday()
            weight = self.weekday_weights[(current.weekday() + 1) % 7]
            if weight > 0:
                self._days.append(current)
                weights.append(weight)
            current += timedelta(days=1)
        if not self._days:
            raise ConfigurationError(f"{self.name}: every day in the window has zero weight")
        self._day_weights = np.array(weights)
        self._hour_weights = np.array(self.hourly_weights)

    def generate(self, context: Any = None) -> datetime:
        ctx = PatternContext.coerce(context)
        day = self._days[_weighted_index(self._day_weights, self.uniform(ctx))]
        hour = _weighted_index(self._hour_weights, self.uniform(ctx))
        stamp = datetime(day.year, day.month, day.day, hour) + timedelta(seconds=int(self.uniform(ctx) * 3600))
        return self.clamp(stamp, self.start_date, self.end_date)

    @property
    def numeric_output(self) -> bool:
        return False

    def peak_days(self) -> List[int]:
        top = max(self.weekday_weights.values())
        return [day for day, weight in self.weekday_weights.items() if weight == top]

    def peak_hours(self) -> List[int]:
        top = max(self.hourly_weights)
        return [hour for hour, weight in enumerate(self.hourly_weights) if weight == top]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def _days_in_month(year: int, month: int) -> int:
    if month == 12:
        return 31
    return (date(year, month + 1, 1) - date(year, month, 1)).days


def _seconds_of_day(moment: datetime) -> int:
    return moment.hour * 3600 + moment.minute * 60 + moment.second
