"""
Crawler app for ScrapeQueue.

Durable, resumable, depth-bounded crawling backed by the crawler_* tables.
"""
