# Weekly alignment of daily factor and price series.
# Factor and price calendars are bucketed with the same week key so that the
# left join of asset returns onto the factor panel lines up exactly.

import logging
from typing import Sequence, Union

import pandas as pd

from factorexposure.src.exceptions import InsufficientHistory, MalformedPanel, UnknownTicker

logger = logging.getLogger(__name__)

RETURN_FACTOR_COLUMNS = ("Mkt-RF", "SMB", "HML", "RMW", "CMA", "MOM")
RISK_FREE_COLUMN = "RF"
FIVE_FACTOR_COLUMNS = ("Mkt-RF", "SMB", "HML", "RMW", "CMA", "RF")
MOMENTUM_COLUMN = "MOM"

# floor to Monday, then +5 days -> Saturday
WEEK_END_OFFSET_DAYS = 5
WEEK_INDEX_NAME = "week"


def week_keys(dates, week_end_offset_days: int = WEEK_END_OFFSET_DAYS) -> pd.DatetimeIndex:
    """
    Map each date onto the canonical ending day of its calendar week.

    The key is the start of the (Monday-anchored) week containing the date plus
    `week_end_offset_days`. Timezone information is dropped; wall-clock dates
    are kept.
    """
    dates = pd.DatetimeIndex(dates)
    if dates.tz is not None:
        dates = dates.tz_localize(None)
    keys = dates.normalize().to_period("W").start_time + pd.Timedelta(days=week_end_offset_days)
    return pd.DatetimeIndex(keys, name=WEEK_INDEX_NAME)


def _as_daily_frame(panel: pd.DataFrame, columns: Sequence[str]) -> pd.DataFrame:
    """
    Validate a daily panel and return a float copy indexed by date.

    A `date` column, when present, is used as the index. Raises MalformedPanel
    for missing columns, unparseable or repeated dates and missing or
    non-numeric values.
    """
    if not isinstance(panel, pd.DataFrame):
        raise MalformedPanel(f"expected a DataFrame, got {type(panel).__name__}")

    df = panel.rename(columns=lambda c: str(c).strip())
    if "date" in df.columns:
        df = df.set_index("date")

    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise MalformedPanel(f"daily panel is missing columns {missing}")

    try:
        index = pd.to_datetime(df.index)
    except (ValueError, TypeError) as exc:
        raise MalformedPanel(f"daily panel dates are not parseable: {exc}") from exc
    if index.hasnans:
        raise MalformedPanel("daily panel contains missing dates")
    if index.tz is not None:
        index = index.tz_localize(None)
    index = index.normalize()
    if index.has_duplicates:
        dupes = index[index.duplicated()].unique()
        raise MalformedPanel(f"daily panel has repeated dates: {[d.date() for d in dupes[:5]]}")

    try:
        values = df[list(columns)].apply(pd.to_numeric, errors="raise").astype(float)
    except (ValueError, TypeError) as exc:
        raise MalformedPanel(f"daily panel has non-numeric values: {exc}") from exc
    values.index = index
    values.index.name = "date"

    null_columns = values.columns[values.isnull().any(axis=0)].to_list()
    if null_columns:
        raise MalformedPanel(f"daily panel has missing values in {null_columns}")

    return values.sort_index()


def merge_momentum(five_factor_daily: pd.DataFrame, momentum_daily: pd.DataFrame) -> pd.DataFrame:
    """
    Join the separately published momentum series onto the five-factor panel.

    Parameters
    ----------
    five_factor_daily : pd.DataFrame
        Daily Mkt-RF, SMB, HML, RMW, CMA and RF in percent.
    momentum_daily : pd.DataFrame
        Daily momentum in percent. The raw files label it `Mom`; both spellings
        are accepted.

    Returns
    -------
    pd.DataFrame
        Index = date, columns = RETURN_FACTOR_COLUMNS + RF, only dates present
        in both inputs.
    """
    momentum = momentum_daily.rename(columns=lambda c: str(c).strip())
    momentum = momentum.rename(columns={c: MOMENTUM_COLUMN for c in momentum.columns
                                        if c.upper() == MOMENTUM_COLUMN})

    factors = _as_daily_frame(five_factor_daily, FIVE_FACTOR_COLUMNS)
    momentum = _as_daily_frame(momentum, [MOMENTUM_COLUMN])

    merged = factors.join(momentum, how="inner")
    dropped = len(factors) - len(merged)
    if dropped:
        logger.warning(f"{dropped} factor dates dropped because no momentum value was published for them")
    return merged[list(RETURN_FACTOR_COLUMNS) + [RISK_FREE_COLUMN]]


class CalendarAggregator:
    """
    Convert a daily factor panel into a weekly one.

    Return-type factors are compounded within the week,
    (Π(1 + r/100) − 1) × 100, while the risk-free rate is summed.
    """

    def __init__(self,
                 week_end_offset_days: int = WEEK_END_OFFSET_DAYS,
                 return_columns: Sequence[str] = RETURN_FACTOR_COLUMNS,
                 risk_free_column: str = RISK_FREE_COLUMN):
        self.week_end_offset_days = week_end_offset_days
        self.return_columns = list(return_columns)
        self.risk_free_column = risk_free_column
        self.logger = logger

    def aggregate(self, daily_panel: pd.DataFrame) -> pd.DataFrame:
        """
        Parameters
        ----------
        daily_panel : pd.DataFrame
            Index (or `date` column) = trading dates, columns include every
            return column and the risk-free column, values in percent.

        Returns
        -------
        pd.DataFrame
            Index = week key (ascending, one row per week), same columns.
        """
        daily = _as_daily_frame(daily_panel, self.return_columns + [self.risk_free_column])
        if daily.empty:
            raise MalformedPanel("daily factor panel has no rows")
        keys = week_keys(daily.index, self.week_end_offset_days)

        compounded = (1.0 + daily[self.return_columns] / 100.0).groupby(keys).prod()
        weekly = (compounded - 1.0) * 100.0
        weekly[self.risk_free_column] = daily[self.risk_free_column].groupby(keys).sum()

        weekly.index.name = WEEK_INDEX_NAME
        self.logger.debug(f"aggregated {len(daily)} daily rows into {len(weekly)} weeks")
        return weekly.sort_index()


class AssetReturnBuilder:
    """
    Derive weekly returns from a daily close series and align them with the
    weekly factor panel.
    """

    def __init__(self,
                 week_end_offset_days: int = WEEK_END_OFFSET_DAYS,
                 risk_free_column: str = RISK_FREE_COLUMN):
        self.week_end_offset_days = week_end_offset_days
        self.risk_free_column = risk_free_column
        self.logger = logger

    @staticmethod
    def _close_series(ticker: str, daily_prices: Union[pd.Series, pd.DataFrame, None]) -> pd.Series:
        if daily_prices is None:
            raise UnknownTicker(ticker, "price source returned no data")
        if isinstance(daily_prices, pd.DataFrame):
            if "close" not in daily_prices.columns:
                raise UnknownTicker(ticker, "price data has no 'close' column")
            daily_prices = daily_prices["close"]

        try:
            prices = pd.to_numeric(daily_prices, errors="coerce").dropna()
        except (TypeError, ValueError) as exc:
            raise UnknownTicker(ticker, f"price values are not numeric: {exc}") from exc
        if prices.empty:
            raise UnknownTicker(ticker, "price source returned no data")

        non_positive = prices <= 0
        if non_positive.any():
            logger.warning(f"{ticker}: {int(non_positive.sum())} non-positive closes dropped")
            prices = prices[~non_positive]
            if prices.empty:
                raise UnknownTicker(ticker, "price source returned no positive close")

        try:
            index = pd.to_datetime(prices.index)
        except (TypeError, ValueError) as exc:
            raise UnknownTicker(ticker, f"price index is not parseable: {exc}") from exc
        if index.isna().any():
            raise UnknownTicker(ticker, "price index contains missing dates")
        if index.tz is not None:
            index = index.tz_localize(None)
        prices = pd.Series(prices.to_numpy(dtype=float), index=index.normalize(), name="close")
        return prices.sort_index()

    def weekly_closes(self, ticker: str, daily_prices) -> pd.Series:
        """Last available close in each week bucket."""
        prices = self._close_series(ticker, daily_prices)
        closes = prices.groupby(week_keys(prices.index, self.week_end_offset_days)).last()
        closes.index.name = WEEK_INDEX_NAME
        return closes

    def weekly_returns(self, ticker: str, daily_prices) -> pd.Series:
        """
        Weekly simple returns in percent. The first week has no predecessor and
        is dropped.
        """
        closes = self.weekly_closes(ticker, daily_prices)
        if len(closes) < 2:
            raise InsufficientHistory(ticker, f"{len(closes)} weekly close(s), at least 2 are needed")
        returns = (closes / closes.shift(1) - 1.0) * 100.0
        return returns.iloc[1:].rename("return")

    def build(self, ticker: str, daily_prices, weekly_factor_panel: pd.DataFrame) -> pd.DataFrame:
        """
        Parameters
        ----------
        ticker : str
            Asset identifier, copied onto every row.
        daily_prices : pd.Series or pd.DataFrame
            Daily closes indexed by date (a DataFrame must carry `close`).
        weekly_factor_panel : pd.DataFrame
            Output of CalendarAggregator.aggregate.

        Returns
        -------
        pd.DataFrame
            Index = week key; columns = ticker, return, the factor columns and
            excess_return. Weeks without a factor row keep nulls.
        """
        if self.risk_free_column not in weekly_factor_panel.columns:
            raise MalformedPanel(f"weekly factor panel is missing {self.risk_free_column}")

        returns = self.weekly_returns(ticker, daily_prices)
        merged = returns.to_frame().join(weekly_factor_panel, how="left")
        merged["excess_return"] = merged["return"] - merged[self.risk_free_column]
        merged.insert(0, "ticker", ticker)
        merged.index.name = WEEK_INDEX_NAME

        unmatched = int(merged[self.risk_free_column].isnull().sum())
        if unmatched:
            self.logger.warning(f"{ticker}: {unmatched} weekly returns have no matching factor week")
        return merged
