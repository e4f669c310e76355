"""
MODULE OVERVIEW:
Process-wide configuration for streamprobe, using Pydantic Settings.
Where it fits: both the client engine and the demo stream server read their defaults here.

WHAT IS HAPPENING HERE:
Every knob a session needs before it has a caller (user agent, throw policy, timeouts,
which system tags end up on metric samples) is declared once. Values come from
`STREAMPROBE_*` environment variables or a local `.env` file, so a load run can be
retuned without touching code.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    USER_AGENT: str = "streamprobe/1.0"
    LOG_LEVEL: str = "INFO"

    # Connect failures: raise from open() when True, otherwise report them in the summary
    THROW: bool = False

    # System tags attached to every metric sample
    SYSTEM_TAGS: List[str] = ["url", "status", "ip"]

    # HTTP transport
    NO_CONNECTION_REUSE: bool = False
    CONNECT_TIMEOUT_S: float = 10.0
    READ_TIMEOUT_S: Optional[float] = None

    # Bound of the parser -> control loop queue
    SIGNAL_QUEUE_SIZE: int = 64

    # Demo stream server
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    HEARTBEAT_INTERVAL_S: float = 15.0

    class Config:
        env_prefix = "STREAMPROBE_"
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'ignore'

settings = Settings()
