import logging
from typing import Dict, List, Optional

import pandas as pd
from pydantic import BaseModel, Field, field_validator, model_validator

from factorexposure.src.analysis import PortfolioExposureAnalysis, PriceSource, random_dollar_exposures
from factorexposure.src.models import ExposureBatchResult
from factorexposure.src.regression import SIGNIFICANCE_LEVEL
from factorexposure.time_series.weekly_panels import WEEK_END_OFFSET_DAYS, CalendarAggregator

logger = logging.getLogger(__name__)


class FactorExposureConfiguration(BaseModel):
    """Pydantic model defining the parameters of one estimation run."""
    tickers: List[str] = Field(min_length=1)
    dollar_exposures: Optional[Dict[str, Optional[float]]] = None
    seed: Optional[int] = None
    decay_rate: float = Field(gt=0.0, le=1.0)
    week_end_offset_days: int = Field(default=WEEK_END_OFFSET_DAYS, ge=0, le=6)
    significance_level: float = Field(default=SIGNIFICANCE_LEVEL, gt=0.0, lt=1.0)
    max_workers: Optional[int] = Field(default=None, ge=1)

    @field_validator("tickers")
    @classmethod
    def _unique_tickers(cls, tickers: List[str]) -> List[str]:
        tickers = [t.strip() for t in tickers]
        if len(set(tickers)) != len(tickers):
            raise ValueError("tickers must be unique")
        return tickers

    @field_validator("dollar_exposures")
    @classmethod
    def _non_negative_exposures(cls, exposures):
        if exposures is None:
            return exposures
        negative = [t for t, v in exposures.items() if v is not None and v < 0]
        if negative:
            raise ValueError(f"dollar exposures must be non-negative: {negative}")
        return {t.strip(): v for t, v in exposures.items()}

    @model_validator(mode="after")
    def _known_exposure_tickers(self):
        if self.dollar_exposures is not None:
            unknown = sorted(set(self.dollar_exposures) - set(self.tickers))
            if unknown:
                raise ValueError(f"dollar exposures given for tickers not in the run: {unknown}")
        return self

    def resolved_dollar_exposures(self) -> Dict[str, Optional[float]]:
        """Configured exposures, or seeded demo exposures when none are given."""
        if self.dollar_exposures is None:
            return random_dollar_exposures(self.tickers, seed=self.seed)
        return {t: self.dollar_exposures.get(t) for t in self.tickers}


class FactorExposureApp:
    """
    Weekly factor panel -> per-ticker decayed WLS -> portfolio exposure.

    Data retrieval and report rendering live outside this app: it receives a
    PriceSource and an already merged daily factor panel and returns the
    ExposureBatchResult.
    """
    configuration_class = FactorExposureConfiguration

    def __init__(self, configuration: FactorExposureConfiguration):
        self.configuration = configuration
        self.logger = logger

    def run(self,
            price_source: PriceSource,
            daily_factor_panel: pd.DataFrame,
            progress: bool = True) -> ExposureBatchResult:
        weekly_panel = CalendarAggregator(
            week_end_offset_days=self.configuration.week_end_offset_days
        ).aggregate(daily_factor_panel)
        self.logger.info(f"weekly factor panel {weekly_panel.index.min().date()} - "
                         f"{weekly_panel.index.max().date()} ({len(weekly_panel)} weeks)")

        analysis = PortfolioExposureAnalysis(
            price_source=price_source,
            weekly_factor_panel=weekly_panel,
            tickers=self.configuration.tickers,
            dollar_exposures=self.configuration.resolved_dollar_exposures(),
            decay_rate=self.configuration.decay_rate,
            week_end_offset_days=self.configuration.week_end_offset_days,
            significance_level=self.configuration.significance_level,
            max_workers=self.configuration.max_workers,
            progress=progress,
        )
        result = analysis.batch_result

        for failure in result.failures:
            self.logger.warning(f"{failure.ticker} failed: {failure.reason}")
        return result
