"""
Shared synthetic panels for the exposure estimation tests.
"""

import numpy as np
import pandas as pd
import pytest

from factorexposure.time_series.weekly_panels import RETURN_FACTOR_COLUMNS

FACTORS = list(RETURN_FACTOR_COLUMNS)


def make_daily_factor_panel(dates, seed: int = 11, rf: float = 0.02) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    values = rng.normal(0.0, 1.0, size=(len(dates), len(FACTORS)))
    panel = pd.DataFrame(values, index=pd.DatetimeIndex(dates, name="date"), columns=FACTORS)
    panel["RF"] = rf
    return panel


def planted_prices(daily_panel: pd.DataFrame, market_beta: float, start_price: float = 100.0) -> pd.Series:
    """
    Closes whose period return is RF + market_beta * Mkt-RF on every row of
    `daily_panel`, with one extra leading close so the first row has a return.
    """
    returns = daily_panel["RF"] + market_beta * daily_panel["Mkt-RF"]
    closes = start_price * np.cumprod(1.0 + returns.to_numpy() / 100.0)
    first_date = daily_panel.index[0] - pd.Timedelta(days=7)
    index = pd.DatetimeIndex([first_date]).append(daily_panel.index)
    return pd.Series(np.concatenate([[start_price], closes]), index=index, name="close")


@pytest.fixture
def weekly_dates():
    # Fridays, one observation per calendar week
    return pd.date_range("2024-01-12", periods=8, freq="7D")


@pytest.fixture
def one_row_per_week_panel(weekly_dates):
    return make_daily_factor_panel(weekly_dates)


@pytest.fixture
def planted_price_frame(one_row_per_week_panel):
    return pd.DataFrame({
        "AAA": planted_prices(one_row_per_week_panel, market_beta=2.0),
        "BBB": planted_prices(one_row_per_week_panel, market_beta=-1.0, start_price=50.0),
    })


@pytest.fixture
def daily_business_panel():
    dates = pd.bdate_range("2023-01-02", "2024-06-28")
    return make_daily_factor_panel(dates, seed=3, rf=0.015)


@pytest.fixture
def make_factor_panel():
    """Builder for random daily factor panels over arbitrary dates."""
    return make_daily_factor_panel
