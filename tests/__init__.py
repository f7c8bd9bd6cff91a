"""Test suite for dollar-rates.

This package contains hermetic tests following the pytest framework.
Tests mirror the dollar_rates/ package modules for discoverability.

Testing Philosophy:
    - Local aiohttp applications stand in for the bank sites
    - Temporary SQLite databases stand in for the rate store
    - Focus coverage on extraction fallbacks, failure isolation and upserts
"""
