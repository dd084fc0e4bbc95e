"""
Core shared utilities: error hierarchy and logging configuration.
"""
