"""
Configuration module for focusrank
"""

from .settings import (
    Settings,
    AppSettings,
    FocusSettings,
    PrioritySettings,
    RetrievalSettings,
    LLMSettings,
    StorageSettings,
    settings,
)

__all__ = [
    "Settings",
    "AppSettings",
    "FocusSettings",
    "PrioritySettings",
    "RetrievalSettings",
    "LLMSettings",
    "StorageSettings",
    "settings",
]
