# deskledger/domain/trades.py
"""
Trade ledger: records BUY / SELL / BUY_SELL trades together with their
position, journal and counterpart-balance effects.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from deskledger.db.models import (
    Currency,
    Trade,
    TradeStatus,
    TradeType,
    TradingParty,
    TransactionType,
)
from deskledger.db.session import UnitOfWork
from deskledger.domain.counterparts import CounterpartLedger
from deskledger.domain.errors import CounterpartyNotFoundError, TradeNotFoundError, ValidationError
from deskledger.domain.journal import Journal, purchase_lines, sale_lines
from deskledger.domain.models import (
    Consumption,
    CreateTradeRequest,
    SellFromPositionRequest,
    TradeFilters,
    TradeView,
)
from deskledger.domain.positions import PositionBook
from deskledger.domain.progress import progress_for_trades
from deskledger.utils.formatting import format_amount
from deskledger.utils.locks import ledger_lock

logger = logging.getLogger(__name__)


def _validate(request: CreateTradeRequest) -> None:
    if request.trade_type not in (TradeType.BUY, TradeType.SELL, TradeType.BUY_SELL):
        raise ValidationError(f"Unknown trade type {request.trade_type}", {"trade_type": request.trade_type})
    for field_name in ("base_currency", "quote_currency"):
        value = getattr(request, field_name)
        if value not in (Currency.AED, Currency.TOMAN):
            raise ValidationError(f"Unsupported currency {value}", {field_name: value})
    if request.base_currency == request.quote_currency:
        raise ValidationError(
            "Base and quote currency must differ",
            {"base_currency": request.base_currency, "quote_currency": request.quote_currency},
        )
    if request.amount is None or request.amount <= 0:
        raise ValidationError("Trade amount must be positive", {"amount": request.amount})
    if request.rate is None or request.rate <= 0:
        raise ValidationError("Trade rate must be positive", {"rate": request.rate})


def trade_description(trade: Trade) -> str:
    """e.g. 'BUY 1,000 AED @ 3 (#00001)'; the suffix is the last 5 chars of the trade number."""
    return (
        f"{trade.trade_type} {format_amount(trade.amount)} {trade.base_currency} "
        f"@ {format_amount(trade.rate)} (#{trade.trade_number[-5:]})"
    )


class TradeLedger:
    """Trade creation and querying."""

    @staticmethod
    def create_trade(uow: UnitOfWork, request: CreateTradeRequest) -> TradeView:
        """
        Record a trade and all of its effects in a single transaction.

        BUY opens a lot and posts a purchase entry. SELL consumes inventory
        (FIFO, or only the named lot), realizes profit against the lots' cost
        and posts a sale entry. BUY_SELL posts a purchase entry and is complete
        on creation. BUY and SELL move the counterparty's balances.

        Raises:
            ValidationError: malformed request
            CounterpartyNotFoundError: unknown counterparty
            InsufficientInventoryError: short sale with short selling disabled
        """
        _validate(request)

        with uow.transaction() as session:
            if request.counterparty_id is not None and not session.get(TradingParty, request.counterparty_id):
                raise CounterpartyNotFoundError(request.counterparty_id)

            today = uow.clock.today()
            trade_date = request.trade_date or today
            now = uow.clock.now()
            trade = Trade(
                trade_number=uow.ids.next("TRD", today),
                trade_type=str(request.trade_type),
                status=TradeStatus.PENDING,
                base_currency=str(request.base_currency),
                quote_currency=str(request.quote_currency),
                amount=request.amount,
                rate=request.rate,
                total_value=request.amount * request.rate,
                counterparty_id=request.counterparty_id,
                trade_date=trade_date,
                settlement_date_base=request.settlement_date_base or trade_date,
                settlement_date_quote=request.settlement_date_quote or trade_date,
                created_at=now,
                updated_at=now,
            )
            session.add(trade)
            session.flush()

            description = trade_description(trade)

            if trade.trade_type == TradeType.BUY:
                PositionBook.open_position(uow, trade.id, trade.base_currency, trade.amount, trade.rate)
                Journal.post_entry(
                    uow,
                    purchase_lines(trade.base_currency, trade.quote_currency, trade.amount, trade.total_value),
                    f"Purchase: {description}",
                    trade_date,
                    trade_id=trade.id,
                )

            elif trade.trade_type == TradeType.SELL:
                consumption = TradeLedger._consume_for_sale(uow, trade, request.sell_from_position_id)
                profit = trade.total_value - consumption.cost_basis
                if trade.quote_currency == Currency.TOMAN:
                    trade.profit_toman = profit
                else:
                    trade.profit_aed = profit
                session.add(trade)

                Journal.post_entry(
                    uow,
                    sale_lines(
                        trade.base_currency,
                        trade.quote_currency,
                        trade.amount,
                        trade.total_value,
                        consumption.cost_basis,
                        profit,
                    ),
                    f"Sale: {description}",
                    trade_date,
                    trade_id=trade.id,
                )

            else:
                Journal.post_entry(
                    uow,
                    purchase_lines(trade.base_currency, trade.quote_currency, trade.amount, trade.total_value),
                    f"Purchase: {description}",
                    trade_date,
                    trade_id=trade.id,
                )
                trade.status = TradeStatus.COMPLETED
                session.add(trade)

            if trade.counterparty_id is not None:
                TradeLedger._move_counterparty_balances(uow, trade, description)

            session.flush()

        logger.info(
            f"Created trade {trade.trade_number}: {description} "
            f"(counterparty {trade.counterparty_id}, status {trade.status})"
        )
        return TradeLedger.get_trade_by_id(uow.session, trade.id)

    @staticmethod
    def _consume_for_sale(uow: UnitOfWork, trade: Trade, position_id: Optional[int]) -> Consumption:
        if position_id is not None:
            position = PositionBook.get_position(uow.session, position_id)
            if position.currency != trade.base_currency:
                raise ValidationError(
                    f"Position {position_id} holds {position.currency}, not {trade.base_currency}",
                    {"position_id": position_id, "currency": position.currency},
                )
            return PositionBook.sell_from_position(uow, position_id, trade.amount)
        return PositionBook.consume(uow, trade.base_currency, trade.amount)

    @staticmethod
    def _move_counterparty_balances(uow: UnitOfWork, trade: Trade, description: str) -> None:
        if trade.trade_type == TradeType.BUY:
            # They deliver base to us; we owe them quote
            moves = [(trade.quote_currency, trade.total_value), (trade.base_currency, -trade.amount)]
            transaction_type = TransactionType.BUY
        elif trade.trade_type == TradeType.SELL:
            moves = [(trade.base_currency, trade.amount), (trade.quote_currency, -trade.total_value)]
            transaction_type = TransactionType.SELL
        else:
            return

        for currency, amount in moves:
            CounterpartLedger.update_balance(
                uow,
                trade.counterparty_id,
                currency,
                amount,
                transaction_type,
                description,
                trade.trade_date,
                trade_id=trade.id,
            )

    @staticmethod
    def sell_from_position(uow: UnitOfWork, request: SellFromPositionRequest) -> TradeView:
        """SELL out of one named lot; the quote currency is the lot's other currency."""
        position = PositionBook.get_position(uow.session, request.position_id)
        base = Currency(position.currency)
        return TradeLedger.create_trade(uow, CreateTradeRequest(
            trade_type=TradeType.SELL,
            base_currency=base,
            quote_currency=base.other,
            amount=request.amount,
            rate=request.rate,
            trade_date=request.trade_date,
            counterparty_id=request.counterparty_id,
            settlement_date_base=request.settlement_date_base,
            settlement_date_quote=request.settlement_date_quote,
            sell_from_position_id=request.position_id,
        ))

    @staticmethod
    def _filtered(stmt, filters: TradeFilters):
        if filters.counterparty_id is not None:
            stmt = stmt.where(Trade.counterparty_id == filters.counterparty_id)
        if filters.status:
            stmt = stmt.where(Trade.status == str(filters.status))
        if filters.base_currency:
            stmt = stmt.where(Trade.base_currency == str(filters.base_currency))
        if filters.quote_currency:
            stmt = stmt.where(Trade.quote_currency == str(filters.quote_currency))
        if filters.start_date:
            stmt = stmt.where(Trade.trade_date >= filters.start_date)
        if filters.end_date:
            stmt = stmt.where(Trade.trade_date <= filters.end_date)
        return stmt

    @staticmethod
    def _views(session: Session, rows) -> List[TradeView]:
        trades = [trade for trade, _ in rows]
        progress = progress_for_trades(session, trades)
        return [
            TradeView(trade=trade, counterparty_name=name, progress=progress[trade.id])
            for trade, name in rows
        ]

    @staticmethod
    def get_trades(
        session: Session,
        filters: Optional[TradeFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[TradeView], int]:
        """Filtered page of trades, newest first, plus the total match count."""
        filters = filters or TradeFilters()

        with ledger_lock.read():
            total = session.exec(TradeLedger._filtered(select(func.count(Trade.id)), filters)).one()

            stmt = select(Trade, TradingParty.name).join(
                TradingParty, Trade.counterparty_id == TradingParty.id, isouter=True
            )
            stmt = TradeLedger._filtered(stmt, filters)
            stmt = stmt.order_by(Trade.created_at.desc(), Trade.id.desc()).offset(offset).limit(limit)

            return TradeLedger._views(session, session.exec(stmt).all()), total

    @staticmethod
    def get_trade_by_id(session: Session, trade_id: int) -> TradeView:
        with ledger_lock.read():
            stmt = select(Trade, TradingParty.name).join(
                TradingParty, Trade.counterparty_id == TradingParty.id, isouter=True
            ).where(Trade.id == trade_id)
            row = session.exec(stmt).first()
            if row is None:
                raise TradeNotFoundError(trade_id)
            return TradeLedger._views(session, [row])[0]
