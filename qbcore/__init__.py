"""
QuickBase core: API client, configuration and codepage management
"""

__version__ = "1.0.0"
