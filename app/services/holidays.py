from datetime import date
from functools import lru_cache
from typing import Optional

import holidays
import structlog

logger = structlog.get_logger(__name__)


class HolidayService:
    """Public holiday lookups backed by the `holidays` library.

    Stores opt in by setting a country code; unknown codes are treated as
    having no public holidays.
    """

    @staticmethod
    @lru_cache(maxsize=32)
    def _country_holidays(country: str, year: int) -> Optional[holidays.HolidayBase]:
        try:
            return holidays.country_holidays(country, years=year)
        except NotImplementedError:
            logger.warning("Unsupported holiday country", country=country)
            return None

    @classmethod
    def is_holiday(cls, country: Optional[str], d: date) -> bool:
        if not country:
            return False
        cal = cls._country_holidays(country.upper(), d.year)
        return cal is not None and d in cal
