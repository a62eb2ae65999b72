"""SQL templates for area indicator processing.

All DuckDB SQL queries are centralized here for maintainability.
Templates use string formatting with named placeholders.

Submodules are grouped by purpose; wildcard re-exports preserve
the flat ``sql.TEMPLATE_NAME`` access pattern for all consumers.
"""

from shrf.data.area_indicators.sql.base import *  # noqa: F403
from shrf.data.area_indicators.sql.indicators import *  # noqa: F403
from shrf.data.area_indicators.sql.interpolation import *  # noqa: F403
from shrf.data.area_indicators.sql.population import *  # noqa: F403
from shrf.data.area_indicators.sql.rates import *  # noqa: F403
from shrf.data.area_indicators.sql.reweighting import *  # noqa: F403
from shrf.data.area_indicators.sql.stats import *  # noqa: F403
