from decimal import Decimal, ROUND_DOWN, localcontext

import numpy as np
import pytest

from fixed_income_kernel.curves import (
    BootstrapInstrument,
    InstrumentType,
    ParInstrument,
    TenorRate,
    bootstrap_spot_curve,
    bootstrap_zero_curve,
    curve_qc_report,
    discount_factor_at,
    forward_rate,
    interpolate_spot_rate,
)
from fixed_income_kernel.errors import FinancialImpossibility, InsufficientData, InvalidInput


@pytest.fixture(scope="module")
def two_point_curve():
    return bootstrap_spot_curve(
        [
            ParInstrument(maturity_years=1, par_rate="0.03", coupon_frequency=2),
            ParInstrument(maturity_years=2, par_rate="0.035", coupon_frequency=2),
        ]
    )


@pytest.fixture(scope="module", params=[1, 2])
def upward_curve(request):
    return bootstrap_spot_curve(
        [
            ParInstrument(maturity_years=1, par_rate="0.02", coupon_frequency=request.param),
            ParInstrument(maturity_years=2, par_rate="0.025", coupon_frequency=request.param),
            ParInstrument(maturity_years=3, par_rate="0.03", coupon_frequency=request.param),
        ]
    )


def test_first_spot_is_par_rate(two_point_curve):
    assert two_point_curve.spot_rates[0].rate == Decimal("0.03")


def test_second_spot_slightly_above_par(two_point_curve):
    spot_2y = two_point_curve.spot_rates[1].rate
    assert Decimal("0.035") < spot_2y < Decimal("0.036"), "upward par curve puts spot above par"
    assert two_point_curve.warnings == ()


def test_discount_factors_positive_and_decreasing(upward_curve):
    dfs = np.array([float(d.factor) for d in upward_curve.discount_factors])
    assert np.all((dfs > 0.0) & (dfs < 1.0)), "discount factors must lie in (0, 1)"
    assert np.all(np.diff(dfs) < 0.0), "discount factors must strictly decrease"


def test_forward_identity(upward_curve):
    spots = upward_curve.spot_rates
    for fwd, (s1, s2) in zip(upward_curve.forward_rates, zip(spots, spots[1:])):
        t1, t2 = float(s1.maturity), float(s2.maturity)
        lhs = (1.0 + float(fwd.rate)) ** (t2 - t1)
        rhs = (1.0 + float(s2.rate)) ** t2 / (1.0 + float(s1.rate)) ** t1
        assert abs(lhs - rhs) < 1e-12


def test_discount_factor_at_knots(two_point_curve):
    for df in two_point_curve.discount_factors:
        assert abs(discount_factor_at(two_point_curve, df.maturity) - df.factor) < Decimal("1e-6")
    assert discount_factor_at(two_point_curve, 0) == 1


def test_curve_qc_report_flags(upward_curve):
    qc = curve_qc_report(upward_curve)
    assert qc["df_positive"].all()
    assert qc["df_monotone"].all()
    assert np.isfinite(qc["rate"]).all()
    assert np.isnan(qc["forward_into"].iloc[0])
    assert np.isfinite(qc["forward_into"].iloc[1:]).all()


def test_interpolation_is_linear_and_flat_outside():
    points = [TenorRate(1, "0.03"), TenorRate(2, "0.04")]
    assert interpolate_spot_rate(points, "1.5") == Decimal("0.035")
    assert interpolate_spot_rate(points, "0.5") == Decimal("0.03")
    assert interpolate_spot_rate(points, 3) == Decimal("0.04")


def test_forward_rate_requires_later_end():
    with pytest.raises(InvalidInput):
        forward_rate("0.03", 2, "0.035", 2)
    with pytest.raises(InvalidInput):
        forward_rate("0.03", 2, "0.035", 1)


@pytest.mark.parametrize(
    "instruments, error",
    [
        ([ParInstrument(1, "0.03")], InsufficientData),
        ([ParInstrument(2, "0.03"), ParInstrument(1, "0.035")], InvalidInput),
        ([ParInstrument(1, "0.03"), ParInstrument(1, "0.035")], InvalidInput),
        ([ParInstrument(0, "0.03"), ParInstrument(1, "0.035")], InvalidInput),
        ([ParInstrument(1, "0.03", 3), ParInstrument(2, "0.035", 3)], InvalidInput),
    ],
)
def test_bad_par_instruments(instruments, error):
    with pytest.raises(error):
        bootstrap_spot_curve(instruments)


def test_negative_discount_factor_is_impossible():
    with pytest.raises(FinancialImpossibility):
        bootstrap_spot_curve(
            [
                ParInstrument(maturity_years=1, par_rate="0.01", coupon_frequency=1),
                ParInstrument(maturity_years=30, par_rate="0.5", coupon_frequency=1),
            ]
        )


def test_zero_curve_from_prices():
    curve = bootstrap_zero_curve(
        [
            BootstrapInstrument(maturity=1, coupon_rate=0, price=97, instrument_type=InstrumentType.ZERO_COUPON),
            BootstrapInstrument(maturity=2, coupon_rate="0.04", price=100, instrument_type="par_bond"),
        ]
    )
    df1 = 0.97
    df2 = (100.0 - 4.0 * df1) / 104.0
    z1, z2 = curve.zero_rates
    assert abs(float(z1.rate) + np.log(df1)) < 1e-12
    assert abs(float(z2.rate) + np.log(df2) / 2.0) < 1e-12
    assert abs(float(curve.discount_factors[1].factor) - df2) < 1e-12

    fwd = curve.forward_rates[0]
    assert abs(float(fwd.rate) - (2.0 * float(z2.rate) - float(z1.rate))) < 1e-12

    qc = curve_qc_report(curve)
    assert qc["df_positive"].all() and qc["df_monotone"].all()


def test_zero_curve_needs_short_end():
    with pytest.raises(InsufficientData):
        bootstrap_zero_curve([BootstrapInstrument(maturity=3, coupon_rate="0.04", price=100)])
    with pytest.raises(InsufficientData):
        bootstrap_zero_curve([])


def test_bootstrap_ignores_ambient_decimal_context():
    instruments = [
        ParInstrument(maturity_years="0.5", par_rate="0.021", coupon_frequency=12),
        ParInstrument(maturity_years="10.25", par_rate="0.034", coupon_frequency=12),
    ]
    points = [TenorRate(1, "0.0312"), TenorRate(3, "0.0377")]
    reference = (bootstrap_spot_curve(instruments), interpolate_spot_rate(points, "1.7"))
    with localcontext() as ctx:
        ctx.prec = 2
        ctx.rounding = ROUND_DOWN
        again = (bootstrap_spot_curve(instruments), interpolate_spot_rate(points, "1.7"))
    assert again == reference


def test_bootstrap_period_count_is_capped():
    with pytest.raises(InvalidInput):
        bootstrap_spot_curve([ParInstrument(1, "0.03", 12), ParInstrument(150, "0.04", 12)])
    with pytest.raises(InvalidInput):
        bootstrap_zero_curve([BootstrapInstrument(maturity=5000, coupon_rate=0, price=1,
                                                  instrument_type=InstrumentType.ZERO_COUPON)])
