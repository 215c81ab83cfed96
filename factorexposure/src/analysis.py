import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from factorexposure.src.aggregation import ExposureAggregator
from factorexposure.src.exceptions import (AssetDataError, AssetUnavailable, FactorExposureError,
                                           RegressionError, UnknownTicker, ZeroTotalExposure)
from factorexposure.src.models import (ExposureBatchResult, ExposureFailure, ExposureRecord,
                                       PortfolioExposure, sort_records)
from factorexposure.src.regression import SIGNIFICANCE_LEVEL, WeightedRegressionEstimator
from factorexposure.time_series.weekly_panels import WEEK_END_OFFSET_DAYS, AssetReturnBuilder

logger = logging.getLogger(__name__)


class PriceSource(Protocol):
    """
    Anything that can hand back the daily close series of a ticker.

    Implementations raise UnknownTicker (or return an empty series) when the
    ticker has no data. Timeouts and retries belong to the implementation.
    """

    def get_close_prices(self, ticker: str) -> pd.Series:
        ...


class FramePriceSource:
    """
    PriceSource over an in-memory wide close-price frame (index = date,
    one column per ticker).
    """

    def __init__(self, prices_wide: pd.DataFrame):
        self.prices = prices_wide

    def get_close_prices(self, ticker: str) -> pd.Series:
        if ticker not in self.prices.columns:
            raise UnknownTicker(ticker, "not present in the price frame")
        closes = self.prices[ticker].dropna()
        if closes.empty:
            raise UnknownTicker(ticker, "price frame has no observations")
        return closes


def random_dollar_exposures(tickers: Sequence[str],
                            seed: Optional[int] = None,
                            total: float = 1_000_000.0) -> Dict[str, float]:
    """
    Random demo dollar allocations that sum to `total`.

    The generator is seeded explicitly so that runs are reproducible.
    """
    rng = np.random.default_rng(seed)
    w = rng.random(len(tickers))
    w /= w.sum()
    return {ticker: round(float(x * total), 2) for ticker, x in zip(tickers, w)}


def default_max_workers() -> int:
    """Available cores minus one, at least one."""
    return max((os.cpu_count() or 2) - 1, 1)


class PortfolioExposureAnalysis:
    """
    Estimate factor exposures for every ticker of a portfolio and combine them.

      - price_source: a PriceSource supplying daily closes per ticker

      - weekly_factor_panel: output of CalendarAggregator.aggregate, shared
        read-only by every worker

      - dollar_exposures: mapping ticker -> dollars, or a list parallel to
        `tickers`. None values are reported but excluded from the weights.

    Every ticker runs end to end (prices, weekly returns, fit) in its own task
    on a bounded thread pool. Per-ticker failures are recorded and do not stop
    the other tickers.

    Attributes
    ----------
    batch_result : ExposureBatchResult
        Records (descending dollar exposure), failures and the portfolio record.
    """

    def __init__(self,
                 price_source: PriceSource,
                 weekly_factor_panel: pd.DataFrame,
                 tickers: Sequence[str],
                 dollar_exposures: Union[Mapping[str, Optional[float]], Sequence[Optional[float]], None],
                 decay_rate: float,
                 week_end_offset_days: int = WEEK_END_OFFSET_DAYS,
                 significance_level: float = SIGNIFICANCE_LEVEL,
                 max_workers: Optional[int] = None,
                 progress: bool = True):
        if len(set(tickers)) != len(tickers):
            raise ValueError("tickers must be unique")
        if not 0.0 < decay_rate <= 1.0:
            raise ValueError(f"decay_rate must be in (0, 1], got {decay_rate}")

        self.price_source = price_source
        self.weekly_factor_panel = weekly_factor_panel
        self.tickers = list(tickers)
        self.dollar_exposures = self._exposure_map(self.tickers, dollar_exposures)
        self.decay_rate = decay_rate
        self.max_workers = max_workers or default_max_workers()
        self.progress = progress

        self.return_builder = AssetReturnBuilder(week_end_offset_days=week_end_offset_days)
        self.estimator = WeightedRegressionEstimator(significance_level=significance_level)
        self.aggregator = ExposureAggregator()
        self.logger = logger

        # ---------- lazy-loaded cache ----------
        self._batch_result: Optional[ExposureBatchResult] = None

    @staticmethod
    def _exposure_map(tickers: List[str], dollar_exposures) -> Dict[str, Optional[float]]:
        if dollar_exposures is None:
            return {ticker: None for ticker in tickers}
        if isinstance(dollar_exposures, Mapping):
            return {ticker: dollar_exposures.get(ticker) for ticker in tickers}
        dollar_exposures = list(dollar_exposures)
        if len(dollar_exposures) != len(tickers):
            raise ValueError(f"got {len(dollar_exposures)} dollar exposures for {len(tickers)} tickers")
        return dict(zip(tickers, dollar_exposures))

    # ------------------------------------------------------------------
    # per-ticker unit of work
    # ------------------------------------------------------------------
    def _fetch_prices(self, ticker: str) -> pd.Series:
        try:
            return self.price_source.get_close_prices(ticker)
        except FactorExposureError:
            raise
        except Exception as exc:
            raise AssetUnavailable(ticker, f"price retrieval failed: {exc}") from exc

    def estimate_asset(self, ticker: str) -> ExposureRecord:
        """Prices -> weekly excess returns -> decayed WLS for one ticker."""
        prices = self._fetch_prices(ticker)
        merged = self.return_builder.build(ticker, prices, self.weekly_factor_panel)
        return self.estimator.estimate(merged,
                                       decay_rate=self.decay_rate,
                                       dollar_exposure=self.dollar_exposures[ticker],
                                       ticker=ticker)

    def _run_one(self, ticker: str) -> Union[ExposureRecord, ExposureFailure]:
        try:
            return self.estimate_asset(ticker)
        except (AssetDataError, RegressionError) as exc:
            self.logger.warning(f"{ticker} excluded: {type(exc).__name__}: {exc}")
            return ExposureFailure(ticker=ticker, reason=type(exc).__name__, message=str(exc))

    # ------------------------------------------------------------------
    # batch
    # ------------------------------------------------------------------
    def run(self) -> ExposureBatchResult:
        records: List[ExposureRecord] = []
        failures: List[ExposureFailure] = []

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._run_one, ticker): ticker for ticker in self.tickers}
            for future in tqdm(as_completed(futures), total=len(futures),
                               desc="estimating_factor_exposures", disable=not self.progress):
                outcome = future.result()
                if isinstance(outcome, ExposureFailure):
                    failures.append(outcome)
                else:
                    records.append(outcome)

        order = {ticker: i for i, ticker in enumerate(self.tickers)}
        records = sort_records(records, self.tickers)
        failures = sorted(failures, key=lambda f: order[f.ticker])

        portfolio = None
        if not records:
            self.logger.warning("no ticker produced an exposure record, portfolio exposure is undefined")
        else:
            try:
                portfolio = self.aggregator.aggregate(records)
            except ZeroTotalExposure as exc:
                self.logger.warning(f"no record carries dollar weight ({exc}), portfolio exposure is undefined")

        self.logger.info(f"Estimated exposures for {len(records)}/{len(self.tickers)} tickers")
        return ExposureBatchResult(records=records, failures=failures, portfolio=portfolio)

    @property
    def batch_result(self) -> ExposureBatchResult:
        """Cached after the first run."""
        if self._batch_result is None:
            self._batch_result = self.run()
        return self._batch_result

    @property
    def exposure_records(self) -> List[ExposureRecord]:
        return self.batch_result.records

    @property
    def failures(self) -> List[ExposureFailure]:
        return self.batch_result.failures

    @property
    def portfolio_exposure(self) -> Optional[PortfolioExposure]:
        return self.batch_result.portfolio
