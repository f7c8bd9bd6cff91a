"""dollar-rates core package.

Collects USD buy/sell rates from Dominican banks and keeps the latest value
per bank:
- extractor: payload → Rate pattern strategies
- sources: per-bank acquisition plans (simple, WAF-protected)
- acquisition: "first success wins" attempt combinator
- http_client / browser: aiohttp session and Playwright fallback
- orchestrator: concurrent, isolated fetch cycle
- store: SQLAlchemy latest-value table and change log
- scheduler: startup cycle plus fixed-interval loop
- logger / exceptions: loguru setup and error hierarchy
"""

__version__ = "1.0.0"
