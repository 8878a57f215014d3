"""
charity_config -- settings for the import engine.

``load_settings()`` is the single entry point: it reads an optional YAML file,
overlays it on ``DEFAULT_SETTINGS`` and applies environment overrides.
"""

from charity_config.loader import load_settings, parse_settings
from charity_config.schema import (
    DEFAULT_SETTINGS,
    ClassificationRuleDef,
    CurrencyAliasDef,
    ImportSettings,
)

__all__ = [
    "DEFAULT_SETTINGS",
    "ClassificationRuleDef",
    "CurrencyAliasDef",
    "ImportSettings",
    "load_settings",
    "parse_settings",
]
