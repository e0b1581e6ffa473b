import datetime as dt
import logging
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from backtester.core.models import DateRangePreset, PriceBar

logger = logging.getLogger(__name__)

_PRESET_YEARS = {
    DateRangePreset.ONE_YEAR: 1,
    DateRangePreset.TWO_YEARS: 2,
    DateRangePreset.THREE_YEARS: 3,
    DateRangePreset.FIVE_YEARS: 5,
}


class OHLCVWindow(NamedTuple):
    """Read-only column views over bars[0..index]."""

    opens: np.ndarray
    highs: np.ndarray
    lows: np.ndarray
    closes: np.ndarray
    volumes: np.ndarray

    def __len__(self) -> int:
        return len(self.closes)


class BarSeries:
    """
    Immutable, validated sequence of daily bars for one symbol.

    Dates are strictly ascending (no duplicates). Column arrays are exposed
    as read-only numpy views so indicator code can slice without copying.
    """

    def __init__(self, bars: Sequence[PriceBar]):
        self._bars: Tuple[PriceBar, ...] = tuple(bars)
        self._validate()

        self.opens = self._column("open")
        self.highs = self._column("high")
        self.lows = self._column("low")
        self.closes = self._column("close")
        self.volumes = self._column("volume")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_bars(cls, bars: Sequence[PriceBar]) -> "BarSeries":
        return cls(bars)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "BarSeries":
        """
        Build from a DataFrame indexed by date (DatetimeIndex) or carrying a
        `date` column. Column names are matched case-insensitively; a missing
        volume column is read as zero volume.
        """
        frame = df.rename(columns={c: str(c).strip().lower() for c in df.columns})

        if "date" in frame.columns:
            dates = pd.to_datetime(frame["date"])
        elif isinstance(frame.index, pd.DatetimeIndex):
            dates = frame.index.to_series()
        else:
            raise ValueError("DataFrame needs a DatetimeIndex or a 'date' column")

        missing = [c for c in ("open", "high", "low", "close") if c not in frame.columns]
        if missing:
            raise ValueError(f"DataFrame is missing OHLC columns: {missing}")

        volumes = frame["volume"] if "volume" in frame.columns else pd.Series(0.0, index=frame.index)

        bars = [
            PriceBar(
                date=ts.date(),
                open=float(o),
                high=float(h),
                low=float(lo),
                close=float(c),
                volume=float(v),
            )
            for ts, o, h, lo, c, v in zip(
                dates,
                frame["open"],
                frame["high"],
                frame["low"],
                frame["close"],
                volumes,
            )
        ]
        return cls(bars)

    def _validate(self) -> None:
        for prev, cur in zip(self._bars, self._bars[1:]):
            if cur.date <= prev.date:
                raise ValueError(
                    f"Bars must have strictly ascending dates: {prev.date} followed by {cur.date}"
                )

    def _column(self, name: str) -> np.ndarray:
        arr = np.fromiter(
            (getattr(b, name) for b in self._bars), dtype=float, count=len(self._bars)
        )
        arr.setflags(write=False)
        return arr

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._bars)

    def __iter__(self) -> Iterator[PriceBar]:
        return iter(self._bars)

    def __getitem__(self, item: Union[int, slice]) -> Union[PriceBar, "BarSeries"]:
        if isinstance(item, slice):
            return BarSeries(self._bars[item])
        return self._bars[item]

    def __repr__(self) -> str:
        if not self._bars:
            return "BarSeries(empty)"
        return f"BarSeries({len(self)} bars, {self._bars[0].date} -> {self._bars[-1].date})"

    @property
    def bars(self) -> Tuple[PriceBar, ...]:
        return self._bars

    @property
    def dates(self) -> List[dt.date]:
        return [b.date for b in self._bars]

    def window(self, index: int) -> OHLCVWindow:
        """Columns restricted to bars[0..index] (inclusive)."""
        end = index + 1
        return OHLCVWindow(
            self.opens[:end],
            self.highs[:end],
            self.lows[:end],
            self.closes[:end],
            self.volumes[:end],
        )

    # ------------------------------------------------------------------
    # Date filtering
    # ------------------------------------------------------------------

    def slice(self, start: int, end: Optional[int] = None) -> "BarSeries":
        return BarSeries(self._bars[start:end])

    def between(
        self, start_date: Optional[dt.date] = None, end_date: Optional[dt.date] = None
    ) -> "BarSeries":
        """Bars with start_date <= date <= end_date (either bound optional)."""
        return BarSeries(
            [
                b
                for b in self._bars
                if (start_date is None or b.date >= start_date)
                and (end_date is None or b.date <= end_date)
            ]
        )

    def index_on_or_after(self, day: dt.date) -> int:
        """First index whose date is >= day (len(self) when none)."""
        for i, b in enumerate(self._bars):
            if b.date >= day:
                return i
        return len(self._bars)

    def resolve_window(
        self,
        preset: DateRangePreset,
        custom_start: Optional[dt.date] = None,
        custom_end: Optional[dt.date] = None,
    ) -> Tuple["BarSeries", int]:
        """
        Apply a date-range preset to the simulated window.

        Returns the series truncated at the window end (later bars are
        future data and are dropped) and the first index of the window.
        Bars before that index stay in the series as indicator warmup.
        """
        series = self
        if preset == DateRangePreset.CUSTOM:
            if custom_end is not None:
                series = self.between(end_date=custom_end)
            if custom_start is None:
                return series, 0
            return series, series.index_on_or_after(custom_start)

        if not self._bars:
            return series, 0

        years = _PRESET_YEARS[preset]
        cutoff = (pd.Timestamp(self._bars[-1].date) - pd.DateOffset(years=years)).date()
        first = series.index_on_or_after(cutoff)
        logger.debug(f"Date range {preset.value}: simulating from {cutoff} (index {first})")
        return series, first
