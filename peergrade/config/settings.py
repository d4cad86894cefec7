"""
Engine Settings

Centralized policy constants for distribution, investment limits, grading
and interest. All values are loaded from environment variables so that a
deployment can tune them without code changes.
"""
import os
from decimal import Decimal
from enum import Enum
from typing import Dict

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return int(value)


def get_decimal_env(key: str, default: str) -> Decimal:
    """Get a Decimal value from environment variable (string-parsed, never float)."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return Decimal(default)
    return Decimal(value.strip())


class TieBreak(str, Enum):
    """Ordering used between teams whose trimmed averages are equal."""
    SUBMISSION_ID = "submission_id"
    TEAM_ID = "team_id"


class EngineSettings:
    """
    Settings for the peer evaluation engine.

    To add a new setting:
    1. Add it here as a class attribute
    2. Load it from an environment variable
    3. Read it through the `settings` singleton
    """

    # Storage
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./peergrade.db")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Investment ledger limits
    MAX_TOKENS_PER_INVESTMENT: int = get_int_env("MAX_TOKENS_PER_INVESTMENT", 50)
    MAX_TOKENS_PER_ASSIGNMENT: int = get_int_env("MAX_TOKENS_PER_ASSIGNMENT", 100)
    MAX_TEAMS_PER_INVESTOR: int = get_int_env("MAX_TEAMS_PER_INVESTOR", 3)
    REQUIRE_EVALUATION_ASSIGNMENT: bool = get_bool_env("REQUIRE_EVALUATION_ASSIGNMENT", False)
    AUTO_REGRADE_ON_INVESTMENT: bool = get_bool_env("AUTO_REGRADE_ON_INVESTMENT", True)
    INVESTMENT_RATE_LIMIT: str = os.getenv("INVESTMENT_RATE_LIMIT", "30/minute")
    RATE_LIMIT_ENABLED: bool = get_bool_env("RATE_LIMIT_ENABLED", True)

    # Distribution
    MAX_EVALUATIONS_PER_STUDENT: int = get_int_env("MAX_EVALUATIONS_PER_STUDENT", 10)
    EVALUATION_HORIZON_DAYS: int = get_int_env("EVALUATION_HORIZON_DAYS", 365)

    # Grading
    GRADE_TIE_BREAK: TieBreak = TieBreak(os.getenv("GRADE_TIE_BREAK", TieBreak.SUBMISSION_ID.value))
    INCOMPLETE_FLAG_FORCES_INCOMPLETE: bool = get_bool_env("INCOMPLETE_FLAG_FORCES_INCOMPLETE", True)

    # Interest rates per tier
    INTEREST_RATE_HIGH: Decimal = get_decimal_env("INTEREST_RATE_HIGH", "0.20")
    INTEREST_RATE_MEDIAN: Decimal = get_decimal_env("INTEREST_RATE_MEDIAN", "0.10")
    INTEREST_RATE_LOW: Decimal = get_decimal_env("INTEREST_RATE_LOW", "0.05")
    INTEREST_RATE_INCOMPLETE: Decimal = get_decimal_env("INTEREST_RATE_INCOMPLETE", "0.00")

    @classmethod
    def interest_rates(cls) -> Dict[str, Decimal]:
        """Tier name -> interest rate."""
        return {
            "high": cls.INTEREST_RATE_HIGH,
            "median": cls.INTEREST_RATE_MEDIAN,
            "low": cls.INTEREST_RATE_LOW,
            "incomplete": cls.INTEREST_RATE_INCOMPLETE,
        }

    @classmethod
    def get_all(cls) -> dict:
        """Get all settings as a dictionary."""
        result = {}
        for key, value in cls.__dict__.items():
            if not key.isupper():
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Decimal):
                value = str(value)
            result[key] = value
        return result


# Singleton instance for easy importing
settings = EngineSettings()
