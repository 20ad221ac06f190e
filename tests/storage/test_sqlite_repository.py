import pytest

from analysis.models import BUY_CHEAP_VENUE, Position, TradeIntent, TradeOutcome
from storage import SQLiteRepository
from storage.sqlite_repository import POSITION_CLOSED, POSITION_OPEN


def _position(signature: str) -> Position:
    return Position(
        symbol='TSLAr',
        mint='TSLArMint',
        wallet_address='Owner111',
        entry_price=100.0,
        entry_time=0.0,
        token_amount=1_500_000_000,
        token_decimals=9,
        cost_usdc=150.0,
        buy_signature=signature,
    )


def _intent(asset) -> TradeIntent:
    return TradeIntent(
        asset=asset,
        direction=BUY_CHEAP_VENUE,
        notional=100.0,
        expected_profit=0.49,
        venue_price=100.0,
        reference_price=100.8,
        spread_percent=0.7937,
    )


@pytest.mark.asyncio
async def test_position_lifecycle(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "positions.db")

    first_id = await repository.record_position_open(_position('buy-1'))
    second_id = await repository.record_position_open(_position('buy-2'))
    assert isinstance(first_id, int)

    open_positions = await repository.fetch_open_positions()
    assert [p.id for p in open_positions] == [first_id, second_id]
    assert open_positions[0].status == POSITION_OPEN
    assert open_positions[0].token_quantity == pytest.approx(1.5)
    assert open_positions[0].opened_at.tzinfo is not None

    await repository.record_position_closed(
        first_id,
        exit_reason='EXIT_TAKE_PROFIT',
        sell_signature='sell-1',
        realized_profit=1.2,
    )

    open_positions = await repository.fetch_open_positions()
    assert [p.buy_signature for p in open_positions] == ['buy-2']
    assert POSITION_CLOSED != POSITION_OPEN

    await repository.close()


@pytest.mark.asyncio
async def test_trades_are_returned_newest_first(tmp_path, tsla):
    repository = SQLiteRepository(db_path=tmp_path / "trades.db")

    await repository.record_trade(
        _intent(tsla),
        TradeOutcome(success=True, signatures=['SIMULATED_1'], realized_profit=0.49, wallet_name='Wallet-1', simulated=True),
    )
    await repository.record_trade(
        _intent(tsla),
        TradeOutcome(success=False, signatures=['buy'], error='Sell failed', exit_reason='EXIT_MAX_HOLD'),
    )
    await repository.record_trade(
        _intent(tsla),
        TradeOutcome(success=True, signatures=['buy', 'sell'], realized_profit=1.2, exit_reason='EXIT_TAKE_PROFIT'),
    )

    trades = await repository.fetch_recent_trades(limit=2)

    assert len(trades) == 2
    assert trades[0].signature == 'buy|sell'
    assert trades[0].realized_profit == pytest.approx(1.2)
    assert trades[1].success is False
    assert trades[1].error == 'Sell failed'
    assert trades[1].exit_reason == 'EXIT_MAX_HOLD'

    everything = await repository.fetch_recent_trades()
    assert everything[-1].simulated is True
    assert everything[-1].wallet_name == 'Wallet-1'
    assert everything[-1].symbol == 'TSLAr'

    await repository.close()
