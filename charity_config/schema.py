"""
Import engine settings schema.

Human-authored settings (YAML) are parsed into these frozen dataclasses by the
loader. Services receive an ``ImportSettings`` instance through their
constructor; nothing reads the YAML file directly.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Lookup tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CurrencyAliasDef:
    """Substrings (matched case-insensitively) that identify one currency code."""

    code: str
    aliases: tuple[str, ...]


@dataclass(frozen=True)
class ClassificationRuleDef:
    """
    One row of the receiver-group lookup table.

    ``label`` None keeps the source classification (e.g. a legal entity's own
    name) as the canonical label. ``classification`` set restricts the rule to
    that exact source classification within the group.
    """

    group: str
    label: str | None = None
    classification: str | None = None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImportSettings:
    """All tunables of the import engine."""

    chunk_size: int = 500
    local_currency: str = "UAH"
    currency_aliases: tuple[CurrencyAliasDef, ...] = ()
    purpose_exclusions: tuple[str, ...] = ()  # Regexes, matched case-insensitively
    classification_rules: tuple[ClassificationRuleDef, ...] = ()
    text_extensions: tuple[str, ...] = (".csv", ".txt")
    database_url: str = "sqlite:///charity_imports.db"


DEFAULT_CURRENCY_ALIASES: tuple[CurrencyAliasDef, ...] = (
    CurrencyAliasDef(code="UAH", aliases=("UAH", "ГРН", "ГРИВ", "HRYVN", "₴")),
    CurrencyAliasDef(code="USD", aliases=("USD", "ДОЛ", "DOLLAR", "$")),
    CurrencyAliasDef(code="EUR", aliases=("EUR", "ЄВРО", "ЕВРО", "EURO", "€")),
    CurrencyAliasDef(code="PLN", aliases=("PLN", "ЗЛОТ", "ZLOT", "ZŁ")),
)

DEFAULT_CLASSIFICATION_RULES: tuple[ClassificationRuleDef, ...] = (
    ClassificationRuleDef(group="Отримувачі благодійної допомоги юр. лица"),
    ClassificationRuleDef(
        group="Індивідуальні ВЧ",
        label="Військово службовець індивідуально",
    ),
    ClassificationRuleDef(
        group="Дети и мед. гражданские, старики",
        label="Допомога цивільним",
    ),
)

DEFAULT_SETTINGS = ImportSettings(
    currency_aliases=DEFAULT_CURRENCY_ALIASES,
    purpose_exclusions=(r"^\s*перерахування",),
    classification_rules=DEFAULT_CLASSIFICATION_RULES,
)
