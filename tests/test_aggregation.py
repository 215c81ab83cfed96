"""
Tests for dollar-weighted portfolio exposure aggregation.
"""

import math

import pytest

from factorexposure.src.aggregation import ExposureAggregator
from factorexposure.src.exceptions import ZeroTotalExposure
from factorexposure.src.models import ExposureRecord, PortfolioExposure


def _record(ticker, dollars, market=1.0, **overrides) -> ExposureRecord:
    values = dict(alpha=0.0, market=market, size=0.0, value=0.0, profit=0.0,
                  investment=0.0, momentum=0.0, r2=0.5)
    values.update(overrides)
    return ExposureRecord(ticker=ticker, dollar_exposure=dollars, n_obs=52, **values)


@pytest.fixture
def records():
    return [
        _record("AAA", 300.0, market=1.0, size=0.2, r2=0.9),
        _record("BBB", 100.0, market=2.0, size=-0.4, r2=0.5),
        _record("CCC", None, market=5.0, size=3.0, r2=0.1),
    ]


class TestWeights:
    """Tests for the normalized dollar weights."""

    def test_weights_sum_to_one_over_non_null(self, records):
        w = ExposureAggregator().weights(records)
        assert w.sum() == pytest.approx(1.0)
        assert w["AAA"] == pytest.approx(0.75)
        assert w["BBB"] == pytest.approx(0.25)
        assert w["CCC"] == 0.0

    def test_nan_exposure_treated_as_null(self):
        w = ExposureAggregator().weights([_record("AAA", 50.0), _record("BBB", math.nan)])
        assert w["AAA"] == 1.0
        assert w["BBB"] == 0.0

    def test_all_null_raises(self):
        with pytest.raises(ZeroTotalExposure):
            ExposureAggregator().weights([_record("AAA", None), _record("BBB", None)])

    def test_zero_total_raises(self):
        with pytest.raises(ZeroTotalExposure):
            ExposureAggregator().aggregate([_record("AAA", 0.0), _record("BBB", 0.0)])

    def test_empty_raises(self):
        with pytest.raises(ZeroTotalExposure):
            ExposureAggregator().aggregate([])


class TestAggregate:
    """Tests for the weighted factor sums."""

    def test_weighted_sums(self, records):
        portfolio = ExposureAggregator().aggregate(records)

        assert isinstance(portfolio, PortfolioExposure)
        assert portfolio.market == pytest.approx(0.75 * 1.0 + 0.25 * 2.0)
        assert portfolio.size == pytest.approx(0.75 * 0.2 - 0.25 * 0.4)
        assert portfolio.r2_est == pytest.approx(0.75 * 0.9 + 0.25 * 0.5)
        assert portfolio.alpha == 0.0

    def test_r2_is_relabelled(self, records):
        dumped = ExposureAggregator().aggregate(records).model_dump()
        assert "r2_est" in dumped
        assert "r2" not in dumped

    def test_null_value_does_not_poison_sum(self, records):
        records[1] = _record("BBB", 100.0, market=2.0, size=math.nan)
        portfolio = ExposureAggregator().aggregate(records)
        assert portfolio.size == pytest.approx(0.75 * 0.2)
        assert not math.isnan(portfolio.market)

    def test_rounded_to_four_decimals(self):
        portfolio = ExposureAggregator().aggregate([
            _record("AAA", 1.0, market=1.0),
            _record("BBB", 2.0, market=0.0),
        ])
        assert portfolio.market == 0.3333

    def test_idempotent(self, records):
        first = ExposureAggregator().aggregate(records)
        second = ExposureAggregator().aggregate(records)
        assert first.model_dump_json() == second.model_dump_json()

    def test_order_independent(self, records):
        forward = ExposureAggregator().aggregate(records)
        backward = ExposureAggregator().aggregate(list(reversed(records)))
        assert forward == backward
