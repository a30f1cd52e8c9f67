"""
Centralized configuration for the Shithead engine.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.REDIS_URL)
    print(config.timing.JUMP_IN_WINDOW_SECONDS)
"""

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

import constants

# Load .env file if it exists
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def default_server_id() -> str:
    """Id unique to this process. Pub/sub ignores messages carrying its own id."""
    return f"{socket.gethostname()}-{os.getpid()}"


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class TimingConfig:
    """Real-time delays used by a running match (seconds)."""
    JUMP_IN_WINDOW_SECONDS: float = 2.0
    CPU_THINK_SECONDS: float = 1.0
    CPU_JUMP_IN_DELAY_MIN: float = 0.2
    CPU_JUMP_IN_DELAY_MAX: float = 1.2
    PUBLISH_RETRY_SECONDS: float = 0.5


@dataclass
class PolicyConfig:
    """Opponent policy tuning."""
    CPU_PLAY_ALL_CHANCE: float = 0.9
    CPU_JUMP_IN_CHANCE: float = 0.7


@dataclass
class ServerConfig:
    """Engine and host process configuration."""
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    AI_DEBUG: bool = False

    # Persistence / transport
    REDIS_URL: str = "redis://localhost:6379"
    POSTGRES_URL: str = ""
    SERVER_ID: str = field(default_factory=default_server_id)
    SNAPSHOT_TTL_HOURS: int = 24

    # Seats
    MIN_PLAYERS: int = 2
    MAX_PLAYERS: int = 4

    timing: TimingConfig = field(default_factory=TimingConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)

    def __post_init__(self):
        # Seat bounds can only narrow what the deal supports
        self.MIN_PLAYERS = max(self.MIN_PLAYERS, constants.MIN_PLAYERS)
        self.MAX_PLAYERS = min(self.MAX_PLAYERS, constants.MAX_PLAYERS)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            AI_DEBUG=get_env_bool("AI_DEBUG", False),
            REDIS_URL=get_env("REDIS_URL", "redis://localhost:6379"),
            POSTGRES_URL=get_env("POSTGRES_URL", ""),
            SERVER_ID=get_env("SERVER_ID") or default_server_id(),
            SNAPSHOT_TTL_HOURS=get_env_int("SNAPSHOT_TTL_HOURS", 24),
            MIN_PLAYERS=get_env_int("MIN_PLAYERS", 2),
            MAX_PLAYERS=get_env_int("MAX_PLAYERS", 4),
            timing=TimingConfig(
                JUMP_IN_WINDOW_SECONDS=get_env_float("JUMP_IN_WINDOW_SECONDS", 2.0),
                CPU_THINK_SECONDS=get_env_float("CPU_THINK_SECONDS", 1.0),
                CPU_JUMP_IN_DELAY_MIN=get_env_float("CPU_JUMP_IN_DELAY_MIN", 0.2),
                CPU_JUMP_IN_DELAY_MAX=get_env_float("CPU_JUMP_IN_DELAY_MAX", 1.2),
                PUBLISH_RETRY_SECONDS=get_env_float("PUBLISH_RETRY_SECONDS", 0.5),
            ),
            policy=PolicyConfig(
                CPU_PLAY_ALL_CHANCE=get_env_float("CPU_PLAY_ALL_CHANCE", 0.9),
                CPU_JUMP_IN_CHANCE=get_env_float("CPU_JUMP_IN_CHANCE", 0.7),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
