import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm

from factorexposure.src.exceptions import EmptySample, RankDeficient
from factorexposure.src.models import FACTOR_FIELD_MAP, ExposureRecord
from factorexposure.time_series.weekly_panels import RETURN_FACTOR_COLUMNS

logger = logging.getLogger(__name__)

REGRESSORS = list(RETURN_FACTOR_COLUMNS)
SIGNIFICANCE_LEVEL = 0.05
UNGATED_COEFFICIENTS = ("Mkt-RF",)
DAYS_PER_MONTH = 30
ROUND_DECIMALS = 4


def decay_weights(week_index, decay_rate: float, final_date=None) -> pd.Series:
    """
    Observation weights w = decay_rate ** age_months.

    age_months is the distance to `final_date` (default: the latest date in
    `week_index`) in 30-day months, so the most recent observation gets a
    weight of exactly 1.
    """
    if not 0.0 < decay_rate <= 1.0:
        raise ValueError(f"decay_rate must be in (0, 1], got {decay_rate}")
    dates = pd.DatetimeIndex(week_index)
    final_date = dates.max() if final_date is None else pd.Timestamp(final_date)
    age_months = ((final_date - dates) / pd.Timedelta(days=DAYS_PER_MONTH)).to_numpy(dtype=float)
    return pd.Series(np.power(decay_rate, age_months), index=week_index, name="weight")


def gate_coefficients(params: pd.Series,
                      pvalues: pd.Series,
                      significance_level: float = SIGNIFICANCE_LEVEL,
                      ungated: Sequence[str] = UNGATED_COEFFICIENTS) -> pd.Series:
    """
    Zero every coefficient whose p-value exceeds `significance_level`.

    Coefficients listed in `ungated` are always kept. A missing p-value counts
    as not significant. Kept values are rounded to 4 decimals.
    """
    gated = {}
    for name, coef in params.items():
        p = pvalues.get(name, np.nan)
        if name in ungated or p <= significance_level:
            gated[name] = round(float(coef), ROUND_DECIMALS)
        else:
            gated[name] = 0.0
    return pd.Series(gated, dtype=float)


class WeightedRegressionEstimator:
    """
    Time-decayed WLS of weekly excess returns on the six factors.

    The fit is
        excess_return = α + β_mkt·Mkt-RF + β_smb·SMB + β_hml·HML
                        + β_rmw·RMW + β_cma·CMA + β_mom·MOM + ε
    with observation weights from `decay_weights`. α and every β except the
    market one are reported as 0 unless significant at `significance_level`.
    """

    def __init__(self,
                 significance_level: float = SIGNIFICANCE_LEVEL,
                 regressors: Sequence[str] = REGRESSORS):
        self.significance_level = significance_level
        self.regressors = list(regressors)
        self.logger = logger

    def prepare_sample(self, ticker: str, merged_rows: pd.DataFrame) -> pd.DataFrame:
        """Keep rows with a finite excess return and finite regressors."""
        columns = ["excess_return"] + self.regressors
        values = merged_rows[columns].apply(pd.to_numeric, errors="coerce")
        sample = merged_rows[np.isfinite(values.to_numpy(dtype=float)).all(axis=1)]
        n_excluded = len(merged_rows) - len(sample)
        if n_excluded:
            self.logger.warning(f"{ticker}: {n_excluded} weekly rows excluded from the regression "
                                f"because the excess return or a factor value is null or infinite")
        if sample.empty:
            raise EmptySample(ticker, "no weekly row with a finite excess return")
        return sample

    def fit(self, ticker: str, merged_rows: pd.DataFrame, decay_rate: float):
        """
        Run the weighted regression and return the statsmodels results object.

        Raises RankDeficient when the weighted design matrix is not full column
        rank or leaves no residual degrees of freedom.
        """
        sample = self.prepare_sample(ticker, merged_rows)

        weights = decay_weights(sample.index, decay_rate)
        X = sm.add_constant(sample[self.regressors].astype(float), has_constant="add")
        y = sample["excess_return"].astype(float)

        n_obs, n_params = X.shape
        if n_obs <= n_params:
            raise RankDeficient(ticker, f"{n_obs} observations for {n_params} parameters")
        weighted_design = X.to_numpy() * np.sqrt(weights.to_numpy())[:, None]
        rank = np.linalg.matrix_rank(weighted_design)
        if rank < n_params:
            raise RankDeficient(ticker, f"weighted design matrix has rank {rank} < {n_params}")

        return sm.WLS(y, X, weights=weights).fit()

    def estimate(self,
                 merged_rows: pd.DataFrame,
                 decay_rate: float,
                 dollar_exposure: Optional[float] = None,
                 ticker: Optional[str] = None) -> ExposureRecord:
        """
        Parameters
        ----------
        merged_rows : pd.DataFrame
            Output of AssetReturnBuilder.build for a single asset.
        decay_rate : float
            In (0, 1]; 1 weights every week equally.
        dollar_exposure : float, optional
            Copied onto the record; None keeps the asset out of portfolio
            weighting.
        ticker : str, optional
            Defaults to the `ticker` column of `merged_rows`.

        Returns
        -------
        ExposureRecord
        """
        if ticker is None:
            ticker = str(merged_rows["ticker"].iloc[0]) if len(merged_rows) else "<unknown>"

        res = self.fit(ticker, merged_rows, decay_rate)
        coefs = gate_coefficients(res.params, res.pvalues, self.significance_level)

        record = ExposureRecord(
            ticker=ticker,
            r2=round(float(res.rsquared), ROUND_DECIMALS),
            dollar_exposure=dollar_exposure,
            n_obs=int(res.nobs),
            **{FACTOR_FIELD_MAP[name]: value for name, value in coefs.items()},
        )
        self.logger.debug(f"{ticker}: fitted on {record.n_obs} weeks, R2={record.r2}")
        return record
