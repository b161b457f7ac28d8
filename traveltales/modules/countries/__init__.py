"""
Countries Module - Black Box Interface

Purpose: Country reference data served to API-key holders
Interface: CountryProvider.all_countries(), CountryProvider.search()
Hidden: Upstream API, retry policy, response shaping

Can be pointed at any restcountries-compatible upstream, or run on
canned data with use_mock=True.
"""

from .provider import MOCK_COUNTRIES, CountryProvider, process_country

__all__ = ["MOCK_COUNTRIES", "CountryProvider", "process_country"]
