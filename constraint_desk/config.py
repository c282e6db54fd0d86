"""Application configuration: environment variables and defaults.

Every tunable lives HERE. Change it once, affects everything.
"""

import os
from pathlib import Path


class Settings:
    """Central configuration pulled from environment with safe defaults."""

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_DIR: Path = Path(os.getenv("CONSTRAINT_DESK_DATA_DIR", str(BASE_DIR / "data")))
    LOGS_DIR: Path = Path(os.getenv("CONSTRAINT_DESK_LOGS_DIR", str(BASE_DIR / "logs")))

    # Database
    DB_PATH: Path = DATA_DIR / "constraint_desk.duckdb"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_RETAIN_FILES: int = int(os.getenv("LOG_RETAIN_FILES", "10"))

    # Owner used by the scheduler when no user is given
    DEFAULT_USER_ID: str = os.getenv("DEFAULT_USER_ID", "default")

    # ── Price monitoring ──────────────────────────────────────────
    EVALUATION_INTERVAL_SECONDS: int = int(os.getenv("EVALUATION_INTERVAL_SECONDS", "60"))
    PRICE_REFRESH_SECONDS: int = int(os.getenv("PRICE_REFRESH_SECONDS", "300"))
    PRICE_FETCH_WORKERS: int = int(os.getenv("PRICE_FETCH_WORKERS", "8"))
    MARKET_HOURS_ONLY: bool = os.getenv("MARKET_HOURS_ONLY", "true").lower() == "true"

    # ── Backtesting & analytics ───────────────────────────────────
    BACKTEST_INITIAL_CAPITAL: float = float(os.getenv("BACKTEST_INITIAL_CAPITAL", "10000"))
    BENCHMARK_SYMBOL: str = os.getenv("BENCHMARK_SYMBOL", "SPY")
    RISK_FREE_RATE: float = float(os.getenv("RISK_FREE_RATE", "0.02"))  # annualized
    SNAPSHOT_INTERVAL_SECONDS: int = int(os.getenv("SNAPSHOT_INTERVAL_SECONDS", "3600"))
    PORTFOLIO_HISTORY_RETENTION_DAYS: int = int(
        os.getenv("PORTFOLIO_HISTORY_RETENTION_DAYS", "365")
    )

    # Stock groups
    DEFAULT_STOCK_GROUP_COLOR: str = os.getenv("DEFAULT_STOCK_GROUP_COLOR", "#3B82F6")

    def __init__(self) -> None:
        """Ensure runtime directories exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.LOGS_DIR.mkdir(parents=True, exist_ok=True)

    def as_dict(self) -> dict:
        """Return the monitoring configuration as a dict."""
        return {
            "db_path": str(self.DB_PATH),
            "default_user_id": self.DEFAULT_USER_ID,
            "evaluation_interval_seconds": self.EVALUATION_INTERVAL_SECONDS,
            "price_refresh_seconds": self.PRICE_REFRESH_SECONDS,
            "price_fetch_workers": self.PRICE_FETCH_WORKERS,
            "market_hours_only": self.MARKET_HOURS_ONLY,
            "snapshot_interval_seconds": self.SNAPSHOT_INTERVAL_SECONDS,
            "benchmark_symbol": self.BENCHMARK_SYMBOL,
        }


settings = Settings()
