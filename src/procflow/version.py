"""
Central version constant for procflow.
"""

__version__ = "0.4.0"
