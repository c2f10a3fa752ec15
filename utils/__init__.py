"""
Utilities package for the crawl pipeline.
"""
