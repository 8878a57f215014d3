"""
Settings loader (``charity_config.loader``).

Loads an optional YAML settings file and parses it into ``ImportSettings``.
Keys omitted from the file keep their ``DEFAULT_SETTINGS`` values, so an
empty file yields the defaults.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types / out-of-range values -> ``ConfigurationError``.

Example::

    chunk_size: 200
    local_currency: UAH
    purpose_exclusions:
      - '^\\s*перерахування'
      - 'internal transfer'
    classification_rules:
      - group: Індивідуальні ВЧ
        label: Військово службовець індивідуально
"""

from __future__ import annotations

import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from charity_kernel.exceptions import ConfigurationError

from charity_config.schema import (
    DEFAULT_SETTINGS,
    ClassificationRuleDef,
    CurrencyAliasDef,
    ImportSettings,
)

DATABASE_URL_ENV = "CHARITY_IMPORT_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError("<root>", "settings file must contain a mapping")
    return data


def _parse_currency_aliases(raw: Any) -> tuple[CurrencyAliasDef, ...]:
    if not isinstance(raw, list):
        raise ConfigurationError("currency_aliases", "expected a list")
    result = []
    for item in raw:
        if not isinstance(item, dict) or "code" not in item:
            raise ConfigurationError("currency_aliases", f"entry without code: {item!r}")
        code = str(item["code"]).strip().upper()
        if len(code) != 3:
            raise ConfigurationError("currency_aliases", f"code must be 3 letters: {code!r}")
        aliases = tuple(str(a).upper() for a in item.get("aliases", ()))
        result.append(CurrencyAliasDef(code=code, aliases=aliases or (code,)))
    return tuple(result)


def _parse_classification_rules(raw: Any) -> tuple[ClassificationRuleDef, ...]:
    if not isinstance(raw, list):
        raise ConfigurationError("classification_rules", "expected a list")
    rules = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("group"):
            raise ConfigurationError("classification_rules", f"entry without group: {item!r}")
        rules.append(
            ClassificationRuleDef(
                group=str(item["group"]),
                label=item.get("label"),
                classification=item.get("classification"),
            )
        )
    return tuple(rules)


def _parse_patterns(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        raise ConfigurationError("purpose_exclusions", "expected a list of regexes")
    patterns = tuple(str(p) for p in raw)
    for p in patterns:
        try:
            re.compile(p)
        except re.error as exc:
            raise ConfigurationError("purpose_exclusions", f"bad regex {p!r}: {exc}") from exc
    return patterns


def parse_settings(data: dict[str, Any], base: ImportSettings = DEFAULT_SETTINGS) -> ImportSettings:
    """
    Parse ``ImportSettings`` from a dict, overlaying ``base``.

    Raises:
        ConfigurationError: if a value has the wrong type or range.
    """
    changes: dict[str, Any] = {}

    if "chunk_size" in data:
        chunk_size = data["chunk_size"]
        if not isinstance(chunk_size, int) or isinstance(chunk_size, bool) or chunk_size < 1:
            raise ConfigurationError("chunk_size", "must be a positive integer")
        changes["chunk_size"] = chunk_size

    if "local_currency" in data:
        code = str(data["local_currency"]).strip().upper()
        if len(code) != 3:
            raise ConfigurationError("local_currency", "must be a 3-letter code")
        changes["local_currency"] = code

    if "currency_aliases" in data:
        changes["currency_aliases"] = _parse_currency_aliases(data["currency_aliases"])
    if "purpose_exclusions" in data:
        changes["purpose_exclusions"] = _parse_patterns(data["purpose_exclusions"])
    if "classification_rules" in data:
        changes["classification_rules"] = _parse_classification_rules(data["classification_rules"])

    if "text_extensions" in data:
        exts = data["text_extensions"]
        if not isinstance(exts, list) or not exts:
            raise ConfigurationError("text_extensions", "expected a non-empty list")
        changes["text_extensions"] = tuple(
            e.lower() if e.startswith(".") else f".{e.lower()}" for e in map(str, exts)
        )

    if "database_url" in data:
        changes["database_url"] = str(data["database_url"])

    return replace(base, **changes)


def load_settings(path: Path | None = None) -> ImportSettings:
    """
    Load settings from ``path`` (if given) and apply the environment override
    for the database URL.
    """
    settings = DEFAULT_SETTINGS
    if path is not None:
        settings = parse_settings(load_yaml_file(path))
    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        settings = replace(settings, database_url=env_url)
    return settings
