"""
Common Utilities
"""
