"""TrendScope: short-form video trend collection for the marketing dashboard."""

__version__ = "0.1.0"
