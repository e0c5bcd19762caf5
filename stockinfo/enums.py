from enum import Enum


class UserRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    USER = "user"


class ViewMode(str, Enum):
    QUARTER = "quarter"
    YEAR = "year"


class FundamentalPeriod(str, Enum):
    """Lookback window of the fundamental-ratio charts."""

    ONE_YEAR = "1y"
    THREE_YEARS = "3y"
    FIVE_YEARS = "5y"
    ALL = "all"


class TechnicalPeriod(str, Enum):
    """Lookback window of the Q-index (technical) charts."""

    THREE_MONTHS = "3m"
    SIX_MONTHS = "6m"
    ONE_YEAR = "1y"
    FIVE_YEARS = "5y"


class RecordFamily(str, Enum):
    EPS = "eps"
    PE = "pe"
    ROA_ROE = "roa_roe"
    FINANCIAL_RATIO = "financial_ratio"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"
