"""
Family Budget API: accounts, emailed-token flows, categories and chat history.
"""

__version__ = "0.1.0"
