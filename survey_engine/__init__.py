"""Adaptive conversation engine for AI-driven survey interviews"""

__version__ = "0.1.0"
