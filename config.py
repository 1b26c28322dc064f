"""
Terminal Strategy Bot — Configuration
All tunable parameters in one place.
"""

import os
from decimal import Decimal
from dataclasses import dataclass, field


@dataclass
class BreakoutConfig:
    risk_amount: Decimal = Decimal("40.0")
    breakout_distance_points: int = 30  # Pending orders at ask + d / bid - d
    stop_loss_points: int = 50
    take_profit_points: int = 100
    poll_interval_sec: float = 2.0
    max_polls: int = 10                 # 20 seconds total waiting for a fill
    monitor_polls: int = 3              # Observe the triggered position before cleanup
    comment: str = "Breakout"


@dataclass
class HedgeConfig:
    risk_amount: Decimal = Decimal("30.0")
    stop_loss_points: int = 100
    take_profit_points: int = 150
    hedge_trigger_points: int = 50      # Open hedge after this many points against us
    poll_interval_sec: float = 1.5
    max_polls: int = 4
    comment: str = "Hedge"


@dataclass
class TrailingConfig:
    risk_amount: Decimal = Decimal("50.0")
    stop_loss_points: int = 80
    take_profit_points: int = 160       # 1:2
    trailing_threshold_points: int = 40  # Move SL when profit reaches this
    breakeven_buffer_points: int = 10   # New SL = entry + buffer
    poll_interval_sec: float = 1.5
    max_polls: int = 3
    comment: str = "Trend"


@dataclass
class MartingaleConfig:
    base_volume: Decimal = Decimal("0.01")
    stop_loss_points: int = 20          # SL == TP → 1:1 payoff
    take_profit_points: int = 20
    max_trades: int = 5
    safety_multiplier: int = 16         # Stop once volume > base × this
    hold_polls: int = 3                 # Observation window per round
    hold_interval_sec: float = 1.0
    pause_between_trades_sec: float = 5.0
    comment: str = "Martingale"


@dataclass
class GatewayConfig:
    api_key: str = ""
    api_secret: str = ""
    base_url: str = "http://127.0.0.1:8080"
    max_retries: int = 3                # Per call, on connectivity loss only
    retry_backoff_sec: float = 1.0
    timeout_sec: float = 10.0


@dataclass
class PaperConfig:
    dry_run: bool = True                # Paper mode: simulated terminal, no real orders
    balance: Decimal = Decimal("10000")
    bid: Decimal = Decimal("1.10000")
    spread_points: int = 10
    digits: int = 5
    random_walk_points: int = 15
    seed: int = 7


@dataclass
class NotificationConfig:
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    enabled: bool = True


@dataclass
class BotConfig:
    symbol: str = "EURUSD"
    breakout: BreakoutConfig = field(default_factory=BreakoutConfig)
    hedge: HedgeConfig = field(default_factory=HedgeConfig)
    trailing: TrailingConfig = field(default_factory=TrailingConfig)
    martingale: MartingaleConfig = field(default_factory=MartingaleConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    paper: PaperConfig = field(default_factory=PaperConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    log_level: str = "INFO"
    log_file: str = "data/bot.log"

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load config with environment variable overrides."""
        config = cls()
        config.symbol = os.getenv("SYMBOL", config.symbol)
        config.gateway.api_key = os.getenv("GATEWAY_API_KEY", "")
        config.gateway.api_secret = os.getenv("GATEWAY_API_SECRET", "")
        config.gateway.base_url = os.getenv("GATEWAY_URL", config.gateway.base_url)
        config.gateway.max_retries = int(os.getenv("GATEWAY_MAX_RETRIES", config.gateway.max_retries))
        config.notifications.telegram_bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        config.notifications.telegram_chat_id = os.getenv("TELEGRAM_CHAT_ID", "")
        config.log_level = os.getenv("LOG_LEVEL", "INFO")
        config.log_file = os.getenv("LOG_FILE", config.log_file)
        config.paper.dry_run = os.getenv("DRY_RUN", "true").lower() == "true"
        config.martingale.safety_multiplier = int(
            os.getenv("MARTINGALE_SAFETY_MULTIPLIER", config.martingale.safety_multiplier)
        )
        config.martingale.max_trades = int(os.getenv("MARTINGALE_MAX_TRADES", config.martingale.max_trades))
        return config
