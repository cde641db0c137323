# deskledger/domain/positions.py
"""
FIFO position book.
BUY trades open lots; SELL trades consume them oldest-first and realize
cost basis from the lots' fixed acquisition rates.
"""

import logging
from collections import deque
from typing import List, Optional

from sqlmodel import Session, select

from deskledger.db.models import Trade, TradePosition
from deskledger.db.session import UnitOfWork
from deskledger.domain.errors import (
    InsufficientInventoryError,
    InsufficientPositionAmountError,
    PositionNotFoundError,
    ValidationError,
)
from deskledger.domain.models import Consumption, LotAllocation, OutstandingPosition

logger = logging.getLogger(__name__)

# Remaining amounts at or below this are treated as exhausted
DUST = 1e-9


class PositionBook:
    """Open, query and consume inventory lots."""

    @staticmethod
    def open_position(uow: UnitOfWork, trade_id: int, currency: str, amount: float, rate: float) -> TradePosition:
        """Create a lot with remaining = original = amount at a fixed cost rate."""
        if amount <= 0:
            raise ValidationError("Position amount must be positive", {"amount": amount})

        with uow.transaction() as session:
            now = uow.clock.now()
            position = TradePosition(
                original_trade_id=trade_id,
                currency=str(currency),
                original_amount=amount,
                remaining_amount=amount,
                average_cost_rate=rate,
                created_at=now,
                updated_at=now,
            )
            session.add(position)
            session.flush()

        logger.info(f"Opened position #{position.id}: {amount} {currency} @ {rate} (trade {trade_id})")
        return position

    @staticmethod
    def available_positions(session: Session, currency: str) -> List[TradePosition]:
        """Non-exhausted lots for a currency, oldest first."""
        stmt = select(TradePosition).where(
            TradePosition.currency == str(currency),
            TradePosition.remaining_amount > DUST,
        ).order_by(TradePosition.created_at, TradePosition.id)
        return list(session.exec(stmt).all())

    @staticmethod
    def available_amount(session: Session, currency: str) -> float:
        return sum(p.remaining_amount for p in PositionBook.available_positions(session, currency))

    @staticmethod
    def plan_consumption(positions: List[TradePosition], currency: str, amount: float) -> Consumption:
        """
        Match `amount` against lots FIFO without touching them.
        Whatever the lots cannot cover is reported as shortfall.
        """
        consumption = Consumption(currency=str(currency), requested=amount)
        open_lots = deque(positions)
        remaining_to_sell = amount

        while remaining_to_sell > DUST and open_lots:
            lot = open_lots[0]
            matched = min(lot.remaining_amount, remaining_to_sell)
            consumption.allocations.append(
                LotAllocation(position_id=lot.id, amount=matched, rate=lot.average_cost_rate)
            )
            remaining_to_sell -= matched
            open_lots.popleft()

        consumption.shortfall = remaining_to_sell if remaining_to_sell > DUST else 0.0
        return consumption

    @staticmethod
    def consume(uow: UnitOfWork, currency: str, amount: float) -> Consumption:
        """
        Sell `amount` of `currency` from the aggregate FIFO pool.

        With allow_short_sell (the default) a shortfall is accepted and carries
        no cost basis; otherwise it is rejected before anything is written.
        """
        if amount <= 0:
            raise ValidationError("Sell amount must be positive", {"amount": amount})

        with uow.transaction() as session:
            positions = PositionBook.available_positions(session, currency)
            consumption = PositionBook.plan_consumption(positions, currency, amount)

            if consumption.shortfall > 0:
                if not uow.settings.allow_short_sell:
                    raise InsufficientInventoryError(currency, amount, consumption.consumed)
                logger.warning(
                    f"Short sale: {consumption.shortfall} {currency} sold beyond available inventory "
                    f"({consumption.consumed} available)"
                )

            PositionBook._apply(uow, session, positions, consumption)

        return consumption

    @staticmethod
    def sell_from_position(uow: UnitOfWork, position_id: int, amount: float) -> Consumption:
        """Consume one named lot directly, bypassing FIFO."""
        if amount <= 0:
            raise ValidationError("Sell amount must be positive", {"amount": amount})

        with uow.transaction() as session:
            position = session.get(TradePosition, position_id)
            if not position:
                raise PositionNotFoundError(position_id)
            if amount > position.remaining_amount + DUST:
                raise InsufficientPositionAmountError(
                    position_id, position.currency, amount, position.remaining_amount
                )

            consumption = Consumption(currency=position.currency, requested=amount)
            consumption.allocations.append(
                LotAllocation(position_id=position.id, amount=amount, rate=position.average_cost_rate)
            )
            PositionBook._apply(uow, session, [position], consumption)

        return consumption

    @staticmethod
    def _apply(uow: UnitOfWork, session: Session, positions: List[TradePosition], consumption: Consumption) -> None:
        by_id = {p.id: p for p in positions}
        now = uow.clock.now()
        for allocation in consumption.allocations:
            lot = by_id[allocation.position_id]
            lot.remaining_amount = max(lot.remaining_amount - allocation.amount, 0.0)
            lot.updated_at = now
            session.add(lot)
            logger.debug(f"Position #{lot.id}: took {allocation.amount}, {lot.remaining_amount} left")
        session.flush()

    @staticmethod
    def get_position(session: Session, position_id: int) -> TradePosition:
        position = session.get(TradePosition, position_id)
        if not position:
            raise PositionNotFoundError(position_id)
        return position

    @staticmethod
    def get_outstanding_positions(session: Session, currency: Optional[str] = None) -> List[OutstandingPosition]:
        """Non-exhausted lots with their originating trade's number and date."""
        stmt = select(TradePosition, Trade.trade_number, Trade.trade_date).join(
            Trade, TradePosition.original_trade_id == Trade.id
        ).where(TradePosition.remaining_amount > DUST)
        if currency is not None:
            stmt = stmt.where(TradePosition.currency == str(currency))
        stmt = stmt.order_by(TradePosition.created_at, TradePosition.id)

        return [
            OutstandingPosition(position=position, trade_number=number, trade_date=trade_date)
            for position, number, trade_date in session.exec(stmt).all()
        ]
