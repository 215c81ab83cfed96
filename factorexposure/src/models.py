from typing import List, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict

# regression column -> ExposureRecord field
FACTOR_FIELD_MAP = {
    "const": "alpha",
    "Mkt-RF": "market",
    "SMB": "size",
    "HML": "value",
    "RMW": "profit",
    "CMA": "investment",
    "MOM": "momentum",
}

EXPOSURE_FIELDS = list(FACTOR_FIELD_MAP.values()) + ["r2"]


class ExposureRecord(BaseModel):
    """Gated factor loadings of one asset, produced once per estimation run."""
    model_config = ConfigDict(frozen=True)

    ticker: str
    alpha: float
    market: float
    size: float
    value: float
    profit: float
    investment: float
    momentum: float
    r2: float
    dollar_exposure: Optional[float] = None
    n_obs: int = 0


class PortfolioExposure(BaseModel):
    """
    Dollar-weighted average of per-asset exposures.

    `r2_est` is the weighted mean of the per-asset R² values, not the R² of a
    portfolio-level regression.
    """
    model_config = ConfigDict(frozen=True)

    alpha: float
    market: float
    size: float
    value: float
    profit: float
    investment: float
    momentum: float
    r2_est: float


class ExposureFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    reason: str
    message: str


class ExposureBatchResult(BaseModel):
    """Outcome of one batch run: every ticker is either a record or a failure."""
    model_config = ConfigDict(frozen=True)

    records: List[ExposureRecord]
    failures: List[ExposureFailure]
    portfolio: Optional[PortfolioExposure] = None

    @property
    def succeeded(self) -> List[str]:
        return [r.ticker for r in self.records]

    @property
    def failed(self) -> List[str]:
        return [f.ticker for f in self.failures]

    def to_frame(self) -> pd.DataFrame:
        """
        Records as a DataFrame indexed by ticker, in presentation order.
        """
        columns = ["ticker"] + EXPOSURE_FIELDS + ["dollar_exposure", "n_obs"]
        if not self.records:
            return pd.DataFrame(columns=columns).set_index("ticker")
        df = pd.DataFrame([r.model_dump() for r in self.records], columns=columns)
        return df.set_index("ticker")


def sort_records(records: List[ExposureRecord], order: List[str]) -> List[ExposureRecord]:
    """
    Order records by descending dollar exposure; ties keep the position of the
    ticker in `order`, and records without a usable exposure go last.
    """
    position = {ticker: i for i, ticker in enumerate(order)}

    def key(record):
        exposure = record.dollar_exposure
        missing = exposure is None or pd.isna(exposure)
        return (missing, 0.0 if missing else -exposure, position.get(record.ticker, len(position)))

    return sorted(records, key=key)
