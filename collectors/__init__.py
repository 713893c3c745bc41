"""
Discovery strategies and remote clients for Repo Discovery.

Each strategy:
- Queries one public source (search API, forum search, event archive)
- Returns Candidates keyed by numeric GitHub id where the source knows it
- Never writes to storage and never raises out of run()

All remote calls go through collectors.fetcher.RateLimitedFetcher so that
callers of one API share a single quota governor.
"""

__version__ = "0.1.0"
