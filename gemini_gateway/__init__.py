"""
Gemini Gateway: OpenAI-compatible API in front of Google Gemini
"""

__version__ = "0.1.0"
