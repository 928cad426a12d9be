"""
API Module Initialization
"""
