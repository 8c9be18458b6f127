"""
Reducer app for ScrapeQueue.

Stateless HTML reduction, cleanup and structural outlines.
"""
