"""
Configuration Management Module
Handles loading and validation of environment variables and settings
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv


LOG_FORMATS = ("text", "json")


@dataclass
class DecoderConfig:
    """Configuration for the message decoder"""
    # SECURITY: bounds recursion over attacker-controlled MIME nesting
    max_nesting_depth: int = 32
    detect_charset: bool = True


@dataclass
class SMTPConfig:
    """Configuration for the SMTP listener"""
    host: str = "127.0.0.1"
    port: int = 2525
    server_hostname: str = ""
    max_message_size: int = 25 * 1024 * 1024


@dataclass
class SystemConfig:
    """Configuration for system settings"""
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: str = ""


@dataclass
class Config:
    """
    Main configuration class

    Values come from the process environment after the optional env file has
    been loaded; variables already set in the environment win.
    """
    decoder: DecoderConfig = field(default_factory=DecoderConfig)
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @classmethod
    def from_env(cls, env_file: str = ".env") -> "Config":
        """
        Load configuration from an environment file

        Args:
            env_file: Path to environment file (default: .env)
        """
        load_dotenv(env_file)
        return cls(
            decoder=cls._load_decoder_config(),
            smtp=cls._load_smtp_config(),
            system=cls._load_system_config(),
        )

    @classmethod
    def _load_decoder_config(cls) -> DecoderConfig:
        """Load decoder configuration"""
        return DecoderConfig(
            max_nesting_depth=int(os.getenv("MAX_NESTING_DEPTH", "32")),
            detect_charset=cls._get_bool("DETECT_CHARSET", True),
        )

    @staticmethod
    def _load_smtp_config() -> SMTPConfig:
        """Load SMTP listener configuration"""
        return SMTPConfig(
            host=os.getenv("SMTP_HOST", "127.0.0.1"),
            port=int(os.getenv("SMTP_PORT", "2525")),
            server_hostname=os.getenv("SMTP_HOSTNAME", ""),
            max_message_size=int(os.getenv("SMTP_MAX_MESSAGE_SIZE", str(25 * 1024 * 1024))),
        )

    @staticmethod
    def _load_system_config() -> SystemConfig:
        """Load system configuration"""
        return SystemConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
            log_file=os.getenv("LOG_FILE", ""),
        )

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Convert environment variable to boolean"""
        value = os.getenv(key, str(default)).lower()
        return value in ('true', '1', 'yes', 'on')

    def validate(self) -> bool:
        """
        Validate configuration

        Returns:
            True if configuration is valid

        Raises:
            ValueError: If configuration is invalid
        """
        if self.decoder.max_nesting_depth < 1:
            raise ValueError("MAX_NESTING_DEPTH must be at least 1")

        if not 0 < self.smtp.port < 65536:
            raise ValueError(f"SMTP_PORT out of range: {self.smtp.port}")

        if self.smtp.max_message_size < 1:
            raise ValueError("SMTP_MAX_MESSAGE_SIZE must be positive")

        if self.system.log_format not in LOG_FORMATS:
            raise ValueError(
                f"LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}, "
                f"got '{self.system.log_format}'"
            )

        return True
