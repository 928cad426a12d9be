"""
Domain Models
"""
