"""Small-area population counts, CASDOHI indicators and event rates."""

from shrf.data.area_indicators.duckdb_processor import (
    CasdohiProcessor,
    EventRateProcessor,
    PopulationCountProcessor,
)
from shrf.data.area_indicators.errors import InputContractError, IntegrityError
from shrf.data.area_indicators.logging import configure_logging

__all__ = [
    "CasdohiProcessor",
    "EventRateProcessor",
    "InputContractError",
    "IntegrityError",
    "PopulationCountProcessor",
    "configure_logging",
]
