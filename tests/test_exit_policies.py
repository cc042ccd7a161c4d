import pytest

from fakes import T0, make_candle
from strategy.exit_policies import (
    ComboExit,
    FixedTakeProfit,
    PartialTakeProfit,
    TechnicalExit,
    TradeInfo,
    TrailingStop,
    build_exit_policy,
    parse_exit_params,
)

CANDLE = make_candle(T0)


def _info(entry=100.0, price=100.0, highest=None, days=0) -> TradeInfo:
    return TradeInfo(
        entry_price=entry,
        current_price=price,
        highest_price=highest if highest is not None else price,
        current_pnl=(price - entry) / entry,
        holding_days=days,
    )


def test_fixed_take_profit_inclusive():
    policy = FixedTakeProfit(0.2)
    assert not policy.should_sell(CANDLE, _info(price=119.9)).should_sell
    decision = policy.should_sell(CANDLE, _info(price=120.0))
    assert decision.should_sell and decision.strength == 1.0
    assert "fixed take profit" in decision.reason


def test_trailing_requires_min_profit_then_drawdown():
    policy = TrailingStop(trailing_percent=0.05, min_profit=0.15)
    # 回撤够但盈利不足
    assert not policy.should_sell(CANDLE, _info(price=110, highest=130)).should_sell
    # 盈利够但回撤不足
    assert not policy.should_sell(CANDLE, _info(price=128, highest=130)).should_sell
    decision = policy.should_sell(CANDLE, _info(price=120, highest=130))
    assert decision.should_sell
    assert "peak: 30.00%" in decision.reason


def test_technical_exit_threshold():
    policy = TechnicalExit()
    assert not policy.should_sell(CANDLE, _info(price=112)).should_sell
    assert policy.should_sell(CANDLE, _info(price=115)).should_sell



def test_technical_min_profit_override():
    policy = build_exit_policy("technical", {"min_profit": 0.05})
    assert isinstance(policy, TechnicalExit)
    assert policy.min_profit == 0.05 and policy.threshold == 0.15
    # 门槛高于 threshold 时，以门槛为准
    strict = build_exit_policy("technical", {"min_profit": 0.2})
    assert not strict.should_sell(CANDLE, _info(price=115)).should_sell
    assert strict.should_sell(CANDLE, _info(price=120)).should_sell

def test_combo_order_of_checks():
    policy = ComboExit(FixedTakeProfit(0.25), TrailingStop(0.08, 0.18), max_holding_days=180)
    assert policy.should_sell(CANDLE, _info(price=101, days=180)).reason == "max holding time: 180 days"
    # 固定止盈阈值放大到 37.5%
    assert not policy.should_sell(CANDLE, _info(price=130)).should_sell
    decision = policy.should_sell(CANDLE, _info(price=138))
    assert decision.should_sell and decision.reason.startswith("enhanced fixed take profit")
    assert policy.should_sell(CANDLE, _info(price=120, highest=131)).reason.startswith("trailing stop")


def test_partial_levels_and_reset():
    policy = build_exit_policy("partial_pyramid")
    assert isinstance(policy, PartialTakeProfit)
    first = policy.should_sell(CANDLE, _info(price=121))
    assert first.should_sell and first.strength == pytest.approx(0.3)
    # 同一级别不会重复触发
    assert not policy.should_sell(CANDLE, _info(price=125)).should_sell
    second = policy.should_sell(CANDLE, _info(price=141))
    assert second.strength == pytest.approx(0.4)
    last = policy.should_sell(CANDLE, _info(price=161))
    assert last.strength == pytest.approx(1.0)
    assert not policy.should_sell(CANDLE, _info(price=200)).should_sell
    policy.reset()
    assert policy.should_sell(CANDLE, _info(price=121)).should_sell


@pytest.mark.parametrize(
    "name,cls,attrs",
    [
        ("conservative", FixedTakeProfit, {"take_profit": 0.15}),
        ("moderate", FixedTakeProfit, {"take_profit": 0.20}),
        ("aggressive", FixedTakeProfit, {"take_profit": 0.30}),
        ("trailing_5", TrailingStop, {"trailing_percent": 0.05, "min_profit": 0.15}),
        ("trailing_10", TrailingStop, {"trailing_percent": 0.10, "min_profit": 0.20}),
        ("combo_smart", ComboExit, {"max_holding_days": 180}),
        ("technical", TechnicalExit, {}),
    ],
)
def test_presets(name, cls, attrs):
    policy = build_exit_policy(name)
    assert isinstance(policy, cls)
    for key, value in attrs.items():
        assert getattr(policy, key) == pytest.approx(value)


def test_build_with_overrides():
    policy = build_exit_policy("trailing", {"trailing_percent": 0.1, "min_profit": 0.05})
    assert policy.trailing_percent == 0.1 and policy.min_profit == 0.05
    combo = build_exit_policy("combo_smart", {"take_profit": 0.4, "max_holding_days": 30})
    assert combo.fixed.take_profit == 0.4 and combo.max_holding_days == 30
    with pytest.raises(ValueError):
        build_exit_policy("unknown")
    with pytest.raises(ValueError):
        build_exit_policy("fixed", {"bogus": 1.0})


def test_parse_exit_params():
    assert parse_exit_params("") == {}
    assert parse_exit_params(" take_profit=0.3 , min_profit=0.1,") == {"take_profit": 0.3, "min_profit": 0.1}
    with pytest.raises(ValueError):
        parse_exit_params("take_profit")
    with pytest.raises(ValueError):
        parse_exit_params("take_profit=abc")
