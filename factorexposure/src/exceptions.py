"""
Error taxonomy for the exposure estimation engine.

Per-asset errors (AssetDataError, RegressionError and their subclasses) are
caught by the batch runner and recorded against the ticker. MalformedPanel and
ZeroTotalExposure concern shared inputs and abort the call.
"""


class FactorExposureError(Exception):
    """Base class for every error raised by factorexposure."""


class MalformedPanel(FactorExposureError):
    """A daily panel is missing a declared column or has unusable dates/values."""


class AssetDataError(FactorExposureError):
    """The price history of one asset cannot be used."""

    def __init__(self, ticker: str, message: str):
        self.ticker = ticker
        super().__init__(f"{ticker}: {message}")


class UnknownTicker(AssetDataError):
    """The external price source has no data for the ticker."""


class AssetUnavailable(AssetDataError):
    """The external price source failed while retrieving the ticker."""


class InsufficientHistory(AssetDataError):
    """Fewer than two weekly closes, so not even one weekly return exists."""


class RegressionError(FactorExposureError):
    """The factor regression cannot be fitted for one asset."""

    def __init__(self, ticker: str, message: str):
        self.ticker = ticker
        super().__init__(f"{ticker}: {message}")


class EmptySample(RegressionError):
    """No weekly row with a usable excess return survived filtering."""


class RankDeficient(RegressionError):
    """The weighted design matrix is not full column rank."""


class ZeroTotalExposure(FactorExposureError):
    """No record carries a positive dollar exposure to weight by."""
