"""Data source implementations for LifeStream.

Importing this package registers all built-in source types.
"""

from sources.apod_source import ApodSource
from sources.demo_source import DemoSource
from sources.forecast_source import ForecastSource
from sources.quote_source import QuoteSource
from sources.radar_source import RadarSource
from sources.rest_source import RESTSource
from sources.system_source import SystemSource

__all__ = [
    "ApodSource",
    "DemoSource",
    "ForecastSource",
    "QuoteSource",
    "RadarSource",
    "RESTSource",
    "SystemSource",
]
