"""Configuration management with validation and environment support."""

import os
from dataclasses import dataclass, field
from email.utils import formataddr
from pathlib import Path
from typing import Dict, Any, List, Optional

from dotenv import load_dotenv


DEFAULT_PROFILE_ORDER = ["primary", "starttls", "service", "service-relaxed-tls"]


@dataclass
class DatabaseConfig:
    """Optional submission store configuration."""
    enabled: bool = False
    path: Path = field(default_factory=lambda: Path("data/marketing_site.db"))
    connection_timeout: int = 30

    def validate(self) -> List[str]:
        """Validate database configuration."""
        errors = []

        if self.connection_timeout <= 0:
            errors.append("connection_timeout must be positive")

        return errors


@dataclass
class EmailConfig:
    """Email configuration."""
    # Transport selection
    transport: str = "smtp"  # smtp, mock
    profiles: List[str] = field(default_factory=lambda: list(DEFAULT_PROFILE_ORDER))
    service: str = "gmail"

    # SMTP settings
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_secure: bool = True
    smtp_username: str = ""
    smtp_password: str = ""
    send_timeout: float = 20.0

    # Pooling (production only)
    pool_max_connections: int = 5
    pool_max_messages: int = 100

    # Sender and recipient
    sender_name: str = "Website"
    sender_email: str = ""
    default_recipient: str = ""

    # Retry settings
    max_retries: int = 2
    retry_base_delay: float = 2.0
    retry_growth_factor: float = 1.5
    delivery_deadline: Optional[float] = 30.0

    # Observability
    record_limit: int = 100

    # Intake policy
    strict_delivery: bool = False
    send_acknowledgements: bool = True

    # Content
    company_name: str = "Our Company"
    client_url: str = ""
    brochure_path: Path = field(default_factory=lambda: Path("public/assets/brochure.pdf"))
    brochure_filename: str = "Brochure.pdf"
    templates_dir: Optional[Path] = None

    # Development
    mock_fail_mode: str = ""  # "", transient, fatal

    @property
    def sender_address(self) -> str:
        return self.sender_email or self.smtp_username

    @property
    def from_header(self) -> str:
        return formataddr((self.sender_name, self.sender_address))

    @property
    def recipient_address(self) -> str:
        return self.default_recipient or self.sender_address

    def validate(self) -> List[str]:
        """Validate email configuration."""
        errors = []

        if self.transport not in ("smtp", "mock"):
            errors.append("transport must be one of: smtp, mock")

        if self.transport == "smtp":
            if not self.smtp_username:
                errors.append("smtp_username is required for SMTP transport")
            if not self.smtp_password:
                errors.append("smtp_password is required for SMTP transport")
            if not self.profiles:
                errors.append("at least one transport profile must be enabled")

        if not self.sender_address:
            errors.append("sender_email (or smtp_username) is required")

        if not 1 <= self.smtp_port <= 65535:
            errors.append("smtp_port must be between 1 and 65535")

        if self.max_retries < 0:
            errors.append("max_retries must be non-negative")

        if self.retry_base_delay < 0:
            errors.append("retry_base_delay must be non-negative")

        if self.retry_growth_factor < 1:
            errors.append("retry_growth_factor must be at least 1")

        if self.record_limit <= 0:
            errors.append("record_limit must be positive")

        return errors


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    log_api_requests: bool = True

    def validate(self) -> List[str]:
        """Validate logging configuration."""
        errors = []

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            errors.append(f"log_level must be one of: {', '.join(valid_levels)}")

        if self.max_file_size <= 0:
            errors.append("max_file_size must be positive")

        if self.backup_count < 0:
            errors.append("backup_count must be non-negative")

        return errors


@dataclass
class SecurityConfig:
    """Security configuration."""
    enable_cors: bool = True
    allowed_origins: List[str] = field(default_factory=lambda: [
        "http://localhost:3000",
        "http://localhost:5001",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ])
    api_rate_limit: int = 100  # form submissions per window per client
    rate_limit_window_seconds: int = 15 * 60
    admin_token: str = ""
    trust_proxy: bool = False  # honour X-Forwarded-For from a reverse proxy

    def validate(self) -> List[str]:
        """Validate security configuration."""
        errors = []

        if self.api_rate_limit <= 0:
            errors.append("api_rate_limit must be positive")

        if self.rate_limit_window_seconds <= 0:
            errors.append("rate_limit_window_seconds must be positive")

        return errors


@dataclass
class SystemConfig:
    """System-wide configuration."""
    environment: str = "development"  # development, staging, production
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 5001
    static_dirs: List[Path] = field(default_factory=lambda: [
        Path("dist"),
        Path("frontend/dist"),
        Path("frontend/build"),
        Path("public"),
    ])

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate(self) -> List[str]:
        """Validate system configuration."""
        errors = []

        valid_environments = ["development", "staging", "production", "test"]
        if self.environment not in valid_environments:
            errors.append(f"environment must be one of: {', '.join(valid_environments)}")

        if not 1 <= self.port <= 65535:
            errors.append("port must be between 1 and 65535")

        return errors


class ProductionSettings:
    """Settings manager loading every section from the environment."""

    def __init__(self, env_file: Optional[Path] = None):
        self.project_root = Path(__file__).parent.parent.parent
        self.env_file = env_file or self.project_root / ".env"

        # Load environment variables
        if self.env_file.exists():
            load_dotenv(self.env_file)

        # Initialize configuration sections
        self.database = self._load_database_config()
        self.email = self._load_email_config()
        self.logging = self._load_logging_config()
        self.security = self._load_security_config()
        self.system = self._load_system_config()

    def _load_database_config(self) -> DatabaseConfig:
        """Load database configuration from environment."""
        return DatabaseConfig(
            enabled=self._get_bool("DATABASE_ENABLED", False),
            path=Path(os.getenv("DATABASE_PATH", "data/marketing_site.db")),
            connection_timeout=self._get_int("DATABASE_CONNECTION_TIMEOUT", 30)
        )

    def _load_email_config(self) -> EmailConfig:
        """Load email configuration from environment."""
        deadline = self._get_float("EMAIL_DELIVERY_DEADLINE", 30.0)

        return EmailConfig(
            transport=os.getenv("EMAIL_TRANSPORT", "smtp").lower(),
            profiles=self._get_list("EMAIL_PROFILES", list(DEFAULT_PROFILE_ORDER)),
            service=os.getenv("EMAIL_SERVICE", "gmail").lower(),

            smtp_host=os.getenv("EMAIL_HOST", "smtp.gmail.com"),
            smtp_port=self._get_int("EMAIL_PORT", 465),
            smtp_secure=self._get_bool("EMAIL_SECURE", True),
            smtp_username=os.getenv("EMAIL_USER", ""),
            smtp_password=os.getenv("EMAIL_PASS", ""),
            send_timeout=self._get_float("EMAIL_SEND_TIMEOUT", 20.0),

            pool_max_connections=self._get_int("EMAIL_POOL_MAX_CONNECTIONS", 5),
            pool_max_messages=self._get_int("EMAIL_POOL_MAX_MESSAGES", 100),

            sender_name=os.getenv("EMAIL_FROM_NAME", "Website"),
            sender_email=os.getenv("EMAIL_FROM", ""),
            default_recipient=os.getenv("EMAIL_TO", ""),

            max_retries=self._get_int("EMAIL_MAX_RETRIES", 2),
            retry_base_delay=self._get_float("EMAIL_RETRY_BASE_DELAY", 2.0),
            retry_growth_factor=self._get_float("EMAIL_RETRY_GROWTH_FACTOR", 1.5),
            delivery_deadline=deadline if deadline > 0 else None,

            record_limit=self._get_int("EMAIL_RECORD_LIMIT", 100),

            strict_delivery=self._get_bool("EMAIL_STRICT_DELIVERY", False),
            send_acknowledgements=self._get_bool("EMAIL_SEND_ACKNOWLEDGEMENTS", True),

            company_name=os.getenv("COMPANY_NAME", "Our Company"),
            client_url=os.getenv("CLIENT_URL", "").rstrip("/"),
            brochure_path=Path(os.getenv("BROCHURE_PATH", "public/assets/brochure.pdf")),
            brochure_filename=os.getenv("BROCHURE_FILENAME", "Brochure.pdf"),
            templates_dir=Path(os.getenv("EMAIL_TEMPLATES_DIR")) if os.getenv("EMAIL_TEMPLATES_DIR") else None,

            mock_fail_mode=os.getenv("EMAIL_MOCK_FAIL_MODE", "").lower()
        )

    def _load_logging_config(self) -> LoggingConfig:
        """Load logging configuration from environment."""
        return LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_dir=Path(os.getenv("LOG_DIR", "logs")),
            max_file_size=self._get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024),
            backup_count=self._get_int("LOG_BACKUP_COUNT", 5),
            log_api_requests=self._get_bool("LOG_API_REQUESTS", True)
        )

    def _load_security_config(self) -> SecurityConfig:
        """Load security configuration from environment."""
        return SecurityConfig(
            enable_cors=self._get_bool("SECURITY_ENABLE_CORS", True),
            allowed_origins=self._get_list("SECURITY_ALLOWED_ORIGINS", [
                "http://localhost:3000", "http://localhost:5001", "http://localhost:5173"
            ]),
            api_rate_limit=self._get_int("SECURITY_API_RATE_LIMIT", 100),
            rate_limit_window_seconds=self._get_int("SECURITY_RATE_LIMIT_WINDOW", 15 * 60),
            admin_token=os.getenv("ADMIN_TOKEN", ""),
            trust_proxy=self._get_bool("SECURITY_TRUST_PROXY", False)
        )

    def _load_system_config(self) -> SystemConfig:
        """Load system configuration from environment."""
        static_dirs = self._get_list("STATIC_DIRS", [])

        return SystemConfig(
            environment=os.getenv("ENVIRONMENT", os.getenv("NODE_ENV", "development")).lower(),
            debug=self._get_bool("DEBUG", False),
            host=os.getenv("HOST", "0.0.0.0"),
            port=self._get_int("PORT", 5001),
            **({"static_dirs": [Path(p) for p in static_dirs]} if static_dirs else {})
        )

    def _get_bool(self, key: str, default: bool) -> bool:
        """Get boolean value from environment."""
        value = os.getenv(key, str(default)).lower()
        return value in ("true", "1", "yes", "on")

    def _get_int(self, key: str, default: int) -> int:
        """Get integer value from environment."""
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def _get_float(self, key: str, default: float) -> float:
        """Get float value from environment."""
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    def _get_list(self, key: str, default: List[str]) -> List[str]:
        """Get list value from environment (comma-separated)."""
        value = os.getenv(key)
        if not value:
            return default
        return [item.strip() for item in value.split(",") if item.strip()]

    def validate(self) -> Dict[str, List[str]]:
        """Validate all configuration sections."""
        validation_results = {}

        sections = {
            "database": self.database,
            "email": self.email,
            "logging": self.logging,
            "security": self.security,
            "system": self.system
        }

        for section_name, section_config in sections.items():
            errors = section_config.validate()
            if errors:
                validation_results[section_name] = errors

        return validation_results

    def get_validation_summary(self) -> Dict[str, Any]:
        """Get validation summary with overall status."""
        validation_results = self.validate()

        total_errors = sum(len(errors) for errors in validation_results.values())

        return {
            "is_valid": total_errors == 0,
            "total_errors": total_errors,
            "sections_with_errors": len(validation_results),
            "errors_by_section": validation_results,
            "environment": self.system.environment,
            "debug_mode": self.system.debug
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary (excluding sensitive data)."""
        return {
            "database": {
                "enabled": self.database.enabled,
                "path": str(self.database.path)
            },
            "email": {
                "transport": self.email.transport,
                "profiles": self.email.profiles,
                "service": self.email.service,
                "smtp_host": self.email.smtp_host,
                "smtp_port": self.email.smtp_port,
                "smtp_secure": self.email.smtp_secure,
                "smtp_username": self.email.smtp_username,
                "sender": self.email.from_header,
                "recipient": self.email.recipient_address,
                "max_retries": self.email.max_retries,
                "delivery_deadline": self.email.delivery_deadline
            },
            "logging": {
                "level": self.logging.level,
                "log_dir": str(self.logging.log_dir)
            },
            "security": {
                "enable_cors": self.security.enable_cors,
                "api_rate_limit": self.security.api_rate_limit,
                "admin_token_set": bool(self.security.admin_token),
                "trust_proxy": self.security.trust_proxy
            },
            "system": {
                "environment": self.system.environment,
                "debug": self.system.debug,
                "port": self.system.port
            }
        }


# Global settings instance
settings = ProductionSettings()
