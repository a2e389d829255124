"""
Backend package for the DAT alumni site.

This package provides a FastAPI application that keeps alumni profile URLs
canonical: it resolves stale slugs through the forward map and alias data kept
in the Google Sheet, redirects `/alumni/<old>` requests, and writes new forward
rules back to the sheet.
"""
