"""
Monitoring for the crawl pipeline: metrics, health checks and HTTP surfaces.
"""
