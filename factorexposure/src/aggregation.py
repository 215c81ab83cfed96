import logging
from typing import Iterable, List

import numpy as np
import pandas as pd

from factorexposure.src.exceptions import ZeroTotalExposure
from factorexposure.src.models import EXPOSURE_FIELDS, ExposureRecord, PortfolioExposure

logger = logging.getLogger(__name__)

ROUND_DECIMALS = 4


class ExposureAggregator:
    """
    Combine per-asset exposure records into one dollar-weighted profile.

    Records with a null (or NaN) dollar exposure are reported but get a weight
    of 0; the remaining weights are normalized to sum to 1.
    """

    def __init__(self):
        self.logger = logger

    @staticmethod
    def _frame(records: Iterable[ExposureRecord]) -> pd.DataFrame:
        rows = [r.model_dump() for r in records]
        return pd.DataFrame(rows, columns=["ticker"] + EXPOSURE_FIELDS + ["dollar_exposure"])

    def weights(self, records: List[ExposureRecord]) -> pd.Series:
        """
        Normalized dollar weights indexed by ticker.

        Raises
        ------
        ZeroTotalExposure
            If every exposure is null or they sum to 0.
        """
        df = self._frame(records)
        dollars = pd.to_numeric(df["dollar_exposure"], errors="coerce")
        total = dollars.sum(skipna=True)
        if dollars.notna().sum() == 0 or not np.isfinite(total) or total == 0:
            raise ZeroTotalExposure("total dollar exposure is zero or undefined")

        n_null = int(dollars.isnull().sum())
        if n_null:
            self.logger.warning(f"{n_null} records without a dollar exposure get zero weight")

        return pd.Series((dollars.fillna(0.0) / total).to_numpy(), index=df["ticker"], name="weight")

    def aggregate(self, records: List[ExposureRecord]) -> PortfolioExposure:
        """
        Σ weight_i · value_i for alpha, the six loadings and R².

        Null values contribute 0 to the sum. Each result is rounded to 4
        decimals; the R² column is returned as `r2_est`.
        """
        w = self.weights(records)
        values = self._frame(records)[EXPOSURE_FIELDS].apply(pd.to_numeric, errors="coerce").fillna(0.0)
        weighted = values.multiply(w.to_numpy(), axis=0).sum(axis=0)

        result = {name: round(float(weighted[name]), ROUND_DECIMALS) for name in EXPOSURE_FIELDS}
        result["r2_est"] = result.pop("r2")
        return PortfolioExposure(**result)
