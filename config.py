"""
Application configuration validated with Pydantic.
"""
from typing import List, Optional
from pathlib import Path
from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Config(BaseSettings):
    """Validated application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    DB_DIALECT: str = Field(default="sqlite", description="Database type: postgres or sqlite")
    DB_ECHO: bool = Field(default=False, description="Echo SQL statements")
    DB_POOL_SIZE: int = Field(default=10, description="PostgreSQL connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Extra connections above pool_size")
    DB_USER: str = Field(default="postgres", description="Database user")
    DB_PASS: str = Field(default="postgres", description="Database password")
    DB_HOST: str = Field(default="localhost", description="Database host")
    DB_PORT: str = Field(default="5432", description="Database port")
    DB_NAME: str = Field(default="orderbot", description="Database name")
    SQLITE_PATH: str = Field(default="orderbot.sqlite3", description="Path to the SQLite file")
    # Hosting platforms pass a single DATABASE_URL; when set it wins
    DATABASE_URL_OVERRIDE: Optional[str] = Field(default=None, description="Database URL", validation_alias="DATABASE_URL")

    @field_validator("DB_DIALECT")
    @classmethod
    def validate_db_dialect(cls, v: str) -> str:
        """Validate the database type."""
        v = v.lower()
        if v not in ("postgres", "postgresql", "sqlite", "sqlite3"):
            raise ValueError(f"Unsupported database type: {v}")
        return v

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        """Connection URL. An explicit DATABASE_URL takes precedence."""
        raw = self.DATABASE_URL_OVERRIDE
        if raw:
            raw = raw.strip()
            # postgresql://... needs the asyncpg driver suffix
            if raw.startswith("postgresql://") and "+asyncpg" not in raw:
                return raw.replace("postgresql://", "postgresql+asyncpg://", 1)
            return raw
        if self.DB_DIALECT in ("sqlite", "sqlite3"):
            base_dir = Path(__file__).resolve().parent
            db_path = Path(self.SQLITE_PATH)
            if not db_path.is_absolute():
                db_path = base_dir / db_path
            return f"sqlite+aiosqlite:///{db_path.resolve().as_posix()}"
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @computed_field
    @property
    def IS_SQLITE(self) -> bool:
        """True when the effective URL points at SQLite."""
        return self.DATABASE_URL.startswith("sqlite")

    # WhatsApp Cloud API
    WHATSAPP_API_BASE: str = Field(default="https://graph.facebook.com", description="Graph API base URL")
    WHATSAPP_API_VERSION: str = Field(default="v22.0", description="Graph API version")
    WHATSAPP_ACCESS_TOKEN: str = Field(default="", description="Bearer token for the Graph API")
    WHATSAPP_PHONE_NUMBER_ID: str = Field(default="", description="Default sender phone number id")
    WHATSAPP_VERIFY_TOKEN: str = Field(default="", description="Token echoed during webhook verification")
    WHATSAPP_CATALOG_ID: str = Field(default="", description="Commerce catalog id used in product messages")
    WHATSAPP_DELIVERY_FLOW_ID: str = Field(default="", description="Flow id for delivery details capture; empty disables it")
    WHATSAPP_TIMEOUT: int = Field(default=15, description="Graph API request timeout in seconds")
    WHATSAPP_RETRY_ATTEMPTS: int = Field(default=3, description="Send attempts before giving up")

    # Catalog / pricing provider
    CATALOG_MODE: str = Field(default="excel", description="Catalog source: excel or http")
    CATALOG_API_URL: str = Field(default="", description="Catalog provider REST base URL")
    CATALOG_API_KEY: str = Field(default="", description="Catalog provider API key")
    CATALOG_TIMEOUT: int = Field(default=20, description="Catalog provider timeout in seconds")
    CATALOG_RETRY_ATTEMPTS: int = Field(default=3, description="Catalog request attempts")
    CATALOG_DEADLINE: float = Field(default=10.0, description="Max seconds for one catalog call, retries included")
    CATALOG_EXCEL_PATH: str = Field(default="catalog.xlsx", description="Workbook used in excel mode")
    CATALOG_CACHE_TTL: int = Field(default=300, description="Seconds catalog responses are cached")

    @field_validator("CATALOG_MODE")
    @classmethod
    def validate_catalog_mode(cls, v: str) -> str:
        """Validate the catalog source."""
        v = v.lower()
        if v not in ("excel", "http"):
            raise ValueError(f"Unsupported catalog mode: {v}")
        return v

    # Conversation policy
    BUSINESS_NAME: str = Field(default="our restaurant", description="Name used in the welcome message")
    SESSION_IDLE_TIMEOUT_MINUTES: int = Field(default=60, description="Idle minutes before a session is swept")
    SWEEP_INTERVAL_SECONDS: int = Field(default=300, description="Seconds between session sweeps")
    MESSAGE_ID_RETENTION_DAYS: int = Field(default=7, description="Days handled message ids are kept for duplicate checks")
    SESSION_LOCK_TIMEOUT: float = Field(default=30.0, description="Max seconds one event may hold a conversation lock")
    SESSION_LOCK_WAIT: float = Field(default=10.0, description="Max seconds to wait for a conversation lock")
    SESSION_SAVE_RETRIES: int = Field(default=3, description="Retries when a session save hits a version conflict")
    LOCAL_UTC_OFFSET_HOURS: int = Field(default=1, description="UTC offset of the restaurant clock (WAT = 1)")
    CURRENCY_SYMBOL: str = Field(default="₦", description="Currency prefix in customer messages")
    FLOOR_TOTAL_AT_ZERO: bool = Field(default=False, description="Clamp negative order totals to zero")

    # Redis
    REDIS_HOST: str = Field(default="localhost", description="Redis host")
    REDIS_PORT: int = Field(default=6379, description="Redis port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: Optional[str] = Field(default=None, description="Redis password")
    REDIS_ENABLED: bool = Field(default=True, description="Try Redis for locks and rate limits")

    # Rate limiting (per customer phone)
    RATE_LIMIT_MESSAGE_MAX: int = Field(default=30, description="Max inbound events per period")
    RATE_LIMIT_MESSAGE_PERIOD: float = Field(default=60.0, description="Rate limit period in seconds")

    # Web server
    WEBHOOK_HOST: str = Field(default="0.0.0.0", description="Bind address")
    WEBHOOK_PORT: int = Field(default=8080, description="Bind port")
    WEBHOOK_PATH: str = Field(default="/webhook", description="Webhook route")

    # Startup
    DB_WAIT_SECONDS: int = Field(default=60, description="How long startup waits for the database")
    DB_RETRY_MAX_DELAY: float = Field(default=10.0, description="Longest pause between database connection attempts")
    RESET_DB: bool = Field(default=False, description="Drop and recreate tables on start (SQLite only)")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FILE: str = Field(default="orderbot.log", description="Rotating log file")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate the logging level."""
        v = v.upper()
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v not in valid_levels:
            raise ValueError(f"Unsupported logging level: {v}. Allowed: {valid_levels}")
        return v

    @computed_field
    @property
    def GRAPH_MESSAGES_URL_TEMPLATE(self) -> str:
        """Messages endpoint with a {phone_number_id} placeholder."""
        base = self.WHATSAPP_API_BASE.rstrip("/")
        return f"{base}/{self.WHATSAPP_API_VERSION}/{{phone_number_id}}/messages"

    @computed_field
    @property
    def GREETING_WORDS(self) -> List[str]:
        """Words treated as greetings rather than notes."""
        return ["hi", "hello", "hey", "start", "begin", "help", "menu"]


# Build the config instance with validation
try:
    config = Config()
except Exception as e:
    import sys
    print(f"❌ Failed to load configuration: {e}", file=sys.stderr)
    sys.exit(1)
