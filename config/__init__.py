"""
Central configuration: settings and the Redis client.
"""
