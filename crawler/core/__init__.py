"""
Pipeline stages: feed parsing, fetching, analysis, ingest, producer and consumer.
"""
