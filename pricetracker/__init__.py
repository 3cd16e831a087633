"""Price tracker: scrape-job orchestration and price history."""

__version__ = "0.1.0"
