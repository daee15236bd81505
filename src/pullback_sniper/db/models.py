from sqlalchemy import Column, Integer, String, DateTime, Float, JSON, Index, func
from .database import Base

class TradeRecord(Base):
    __tablename__ = 'trades'

    id = Column(Integer, primary_key=True)
    trade_key = Column(String, nullable=False, unique=True)  # [backtest_id/]address:entry_time
    token_address = Column(String, nullable=False)
    entry_price = Column(Float, nullable=False)
    exit_price = Column(Float, nullable=False)
    entry_time = Column(DateTime(timezone=True), nullable=False)
    exit_time = Column(DateTime(timezone=True), nullable=False)
    quantity = Column(Float, nullable=False)
    pnl = Column(Float, nullable=False)
    pnl_percent = Column(Float, nullable=False)
    exit_reason = Column(String, nullable=False)
    backtest_id = Column(String)  # NULL for live trades
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (Index('ix_trades_backtest_id', 'backtest_id'),)

class AlertRecord(Base):
    __tablename__ = 'alerts'

    id = Column(Integer, primary_key=True)
    type = Column(String, nullable=False)  # info success warning error
    message = Column(String, nullable=False)
    token_address = Column(String)
    timestamp = Column(DateTime(timezone=True))
    created_at = Column(DateTime, server_default=func.now())

class BacktestResultRecord(Base):
    __tablename__ = 'backtest_results'

    id = Column(Integer, primary_key=True)
    backtest_id = Column(String, nullable=False, unique=True)
    config = Column(JSON, nullable=False)
    total_trades = Column(Integer, nullable=False)
    win_rate = Column(Float, nullable=False)
    total_pnl = Column(Float, nullable=False)
    avg_trade = Column(Float, nullable=False)
    max_drawdown = Column(Float, nullable=False)
    sharpe_ratio = Column(Float, nullable=False)
    metrics = Column(JSON)  # full metrics incl. exit reason counts
    created_at = Column(DateTime, server_default=func.now())

class PositionRecord(Base):
    __tablename__ = 'positions'

    id = Column(Integer, primary_key=True)
    token_address = Column(String, nullable=False, unique=True)
    entry_price = Column(Float, nullable=False)
    entry_market_cap = Column(Float, nullable=False)
    entry_time = Column(DateTime(timezone=True), nullable=False)
    quantity = Column(Float, nullable=False)
    stop_loss_price = Column(Float, nullable=False)
    trailing_stop_price = Column(Float, nullable=False)
    peak_price = Column(Float, nullable=False)
    momentum_phase = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
