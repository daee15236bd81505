from typing import Dict, Iterable, List
import os
import pandas as pd
from pullback_sniper.core.types import PricePoint, TokenHistory
from .price_source import HistoricalDataUnavailable, HistoricalPriceSource

REQUIRED_COLUMNS = ['address', 'timestamp', 'price', 'market_cap', 'volume']
HISTORY_COLUMNS = ['address', 'name', 'symbol', 'created_at', 'timestamp', 'price', 'market_cap', 'volume']


class BacktestDataFeed(HistoricalPriceSource):
    """
    Recorded price histories from a CSV file, one row per observation:
    address, name, symbol, created_at, timestamp, price, market_cap, volume.
    name/symbol/created_at are optional. Rows with unparseable numbers are
    dropped; duplicate timestamps keep the last row.
    """

    def __init__(self, csv_path: str):
        self.csv_path = csv_path
        super().__init__(load_price_histories(csv_path))


def load_price_histories(csv_path: str) -> List[TokenHistory]:
    if not os.path.exists(csv_path):
        raise HistoricalDataUnavailable(f"History file not found: {csv_path}")

    df = pd.read_csv(csv_path)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise HistoricalDataUnavailable(f"{csv_path} is missing columns: {missing}")

    df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True, errors='coerce')
    for col in ('price', 'market_cap', 'volume'):
        df[col] = pd.to_numeric(df[col], errors='coerce')
    df = df.dropna(subset=REQUIRED_COLUMNS)
    if df.empty:
        raise HistoricalDataUnavailable(f"No usable rows in {csv_path}")

    if 'created_at' in df.columns:
        df['created_at'] = pd.to_datetime(df['created_at'], utc=True, errors='coerce')
    else:
        df['created_at'] = pd.NaT

    df['address'] = df['address'].astype(str)
    df = (df.sort_values(['address', 'timestamp'])
            .drop_duplicates(subset=['address', 'timestamp'], keep='last'))

    histories = []
    for address, group in df.groupby('address', sort=True):
        first = group.iloc[0]
        created_at = group['created_at'].min()
        histories.append(TokenHistory(
            address=address,
            name=str(first['name']) if 'name' in group and pd.notna(first['name']) else address,
            symbol=str(first['symbol']) if 'symbol' in group and pd.notna(first['symbol']) else address[:6],
            created_at=None if pd.isna(created_at) else created_at.to_pydatetime(),
            points=[
                PricePoint(
                    timestamp=row.timestamp.to_pydatetime(),
                    price=float(row.price),
                    market_cap=float(row.market_cap),
                    volume=float(row.volume),
                )
                for row in group.itertuples(index=False)
            ],
        ))
    return histories


def save_price_histories(histories: Iterable[TokenHistory], csv_path: str) -> int:
    """Write histories in the format load_price_histories reads. Returns the row count."""
    rows: List[Dict] = []
    for history in histories:
        for point in history.points:
            rows.append({
                'address': history.address,
                'name': history.name,
                'symbol': history.symbol,
                'created_at': history.created_at,
                'timestamp': point.timestamp,
                'price': point.price,
                'market_cap': point.market_cap,
                'volume': point.volume,
            })

    directory = os.path.dirname(csv_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    pd.DataFrame(rows, columns=HISTORY_COLUMNS).to_csv(csv_path, index=False)
    return len(rows)
