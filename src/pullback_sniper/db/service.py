from typing import Dict, List, Optional
import logging
from sqlalchemy.exc import IntegrityError
from pullback_sniper.core.events import Alert
from pullback_sniper.core.position_tracker import PositionConflictError, PositionStore
from pullback_sniper.core.sinks import TradeSink
from pullback_sniper.core.types import MomentumPhase, Position, Trade, to_utc
from .database import DatabaseConnection
from .models import AlertRecord, BacktestResultRecord, PositionRecord, TradeRecord


class DatabaseService(TradeSink):
    """
    Trades, alerts and backtest summaries. Trade writes are idempotent on
    trade_key. Datetimes are written as UTC; SQLite reads them back naive,
    so every read goes through to_utc.
    """

    def __init__(self, db: DatabaseConnection = None, db_url: Optional[str] = None):
        self.db = db or DatabaseConnection(db_url)
        self.db.init_db()
        self.logger = logging.getLogger(__name__)

    def record_trade(self, trade: Trade, backtest_id: Optional[str] = None) -> bool:
        key = trade.key_for(backtest_id)
        try:
            with self.db.session_scope() as session:
                if session.query(TradeRecord.id).filter_by(trade_key=key).first():
                    self.logger.info(f"Trade {key} already recorded, skipping")
                    return False
                session.add(TradeRecord(
                    trade_key=key,
                    token_address=trade.token_address,
                    entry_price=trade.entry_price,
                    exit_price=trade.exit_price,
                    entry_time=to_utc(trade.entry_time),
                    exit_time=to_utc(trade.exit_time),
                    quantity=trade.quantity,
                    pnl=trade.pnl,
                    pnl_percent=trade.pnl_percent,
                    exit_reason=trade.exit_reason,
                    backtest_id=backtest_id,
                ))
            return True
        except IntegrityError:
            # Another writer stored the same key between the check and the insert
            return False

    def has_trade(self, key: str) -> bool:
        with self.db.session_scope() as session:
            return session.query(TradeRecord.id).filter_by(trade_key=key).first() is not None

    def record_alert(self, alert: Alert) -> None:
        with self.db.session_scope() as session:
            session.add(AlertRecord(
                type=alert.type,
                message=alert.message,
                token_address=alert.token_address,
                timestamp=to_utc(alert.timestamp),
            ))

    def save_backtest_result(self, result, config: Dict) -> int:
        """Store a BacktestResult summary next to the parameters that produced it"""
        metrics = result.metrics
        record = BacktestResultRecord(
            backtest_id=result.backtest_id,
            config=config,
            total_trades=metrics.total_trades,
            win_rate=metrics.win_rate,
            total_pnl=metrics.total_pnl,
            avg_trade=metrics.avg_trade,
            max_drawdown=metrics.max_drawdown,
            sharpe_ratio=metrics.sharpe_ratio,
            metrics=metrics.as_dict(),
        )
        with self.db.session_scope() as session:
            session.add(record)
            session.flush()
            record_id = record.id
        self.logger.info(f"Saved backtest {result.backtest_id} ({metrics.total_trades} trades)")
        return record_id

    def get_trades(self, backtest_id: Optional[str] = None) -> List[Trade]:
        with self.db.session_scope() as session:
            query = session.query(TradeRecord)
            if backtest_id is not None:
                query = query.filter_by(backtest_id=backtest_id)
            records = query.order_by(TradeRecord.exit_time, TradeRecord.token_address).all()
            return [
                Trade(
                    token_address=r.token_address,
                    entry_price=r.entry_price,
                    exit_price=r.exit_price,
                    entry_time=to_utc(r.entry_time),
                    exit_time=to_utc(r.exit_time),
                    quantity=r.quantity,
                    pnl=r.pnl,
                    pnl_percent=r.pnl_percent,
                    exit_reason=r.exit_reason,
                )
                for r in records
            ]

    def get_alerts(self) -> List[Alert]:
        with self.db.session_scope() as session:
            return [
                Alert(type=r.type, message=r.message, token_address=r.token_address,
                      timestamp=to_utc(r.timestamp))
                for r in session.query(AlertRecord).order_by(AlertRecord.id).all()
            ]


class DatabasePositionStore(PositionStore):
    """Open positions in the positions table, visible to a restarted process"""

    def __init__(self, db: DatabaseConnection):
        self.db = db
        self.db.init_db()

    @staticmethod
    def _to_position(record: PositionRecord) -> Position:
        return Position(
            token_address=record.token_address,
            entry_price=record.entry_price,
            entry_market_cap=record.entry_market_cap,
            entry_time=to_utc(record.entry_time),
            quantity=record.quantity,
            stop_loss_price=record.stop_loss_price,
            trailing_stop_price=record.trailing_stop_price,
            peak_price=record.peak_price,
            momentum_phase=MomentumPhase(record.momentum_phase),
        )

    def get_position(self, mint: str) -> Optional[Position]:
        with self.db.session_scope() as session:
            record = session.query(PositionRecord).filter_by(token_address=mint).first()
            return self._to_position(record) if record else None

    def add_position(self, position: Position) -> None:
        try:
            with self.db.session_scope() as session:
                session.add(PositionRecord(
                    token_address=position.token_address,
                    entry_price=position.entry_price,
                    entry_market_cap=position.entry_market_cap,
                    entry_time=to_utc(position.entry_time),
                    quantity=position.quantity,
                    stop_loss_price=position.stop_loss_price,
                    trailing_stop_price=position.trailing_stop_price,
                    peak_price=position.peak_price,
                    momentum_phase=position.momentum_phase.value,
                ))
        except IntegrityError as e:
            raise PositionConflictError(f"Position already open for {position.token_address}") from e

    def update_position(self, position: Position) -> None:
        with self.db.session_scope() as session:
            record = session.query(PositionRecord).filter_by(token_address=position.token_address).first()
            if record:
                record.trailing_stop_price = position.trailing_stop_price
                record.peak_price = position.peak_price
                record.momentum_phase = position.momentum_phase.value

    def remove_position(self, mint: str) -> Optional[Position]:
        with self.db.session_scope() as session:
            record = session.query(PositionRecord).filter_by(token_address=mint).first()
            if record is None:
                return None
            position = self._to_position(record)
            session.delete(record)
            return position

    def get_all_positions(self) -> Dict[str, Position]:
        with self.db.session_scope() as session:
            return {r.token_address: self._to_position(r) for r in session.query(PositionRecord).all()}
