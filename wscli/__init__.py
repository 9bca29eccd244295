"""
wscli - Google Workspace API client runtime for CLI and agent callers.
"""

__version__ = "0.1.0"
__logo__ = "🗂️"
