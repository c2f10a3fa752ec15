"""
Crawl-to-ingest pipeline package.
"""
