"""PhoenixTool: Phoenix DEX fill ingestion and metered OHLC queries."""

__version__ = "0.1.0"
