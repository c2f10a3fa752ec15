"""
Queue, dead-letter, content store and secret clients.
"""
