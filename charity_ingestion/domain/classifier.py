"""
Row classifier: one raw row -> a CanonicalRecord or a SkipRecord.

ZERO I/O. Pure over its inputs plus the ImportSettings it was built with.

Decision order for every row:
    1. categorical remap says "not allowed"   -> business_rule skip
    2. a required field is missing or invalid -> malformed skip (all fields named)
    3. purpose text matches an exclusion      -> business_rule skip
    4. accept

Across one import, an act whose external id appears again further on is
superseded by the later row and reported as a skip, so every input row ends
up either imported or skipped exactly once.

Acts carry line items; each item is validated on its own and unimportable
items are dropped from the act. An act left with no items is malformed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from charity_config.schema import DEFAULT_SETTINGS, ImportSettings

from charity_ingestion.domain.normalizers import (
    clean_text,
    compile_patterns,
    matches_any,
    normalize_currency,
    parse_amount,
    parse_datetime,
    remap_classification,
    round_money,
    to_json_safe,
)
from charity_ingestion.domain.types import (
    CanonicalRecord,
    DistributionActPayload,
    DonationPayload,
    LineItem,
    PropertyActPayload,
    RecordKind,
    SkipCategory,
    SkipRecord,
)

REASON_CLASSIFICATION = "excluded by classification rule"
REASON_PURPOSE = "excluded by purpose pattern"
REASON_SUPERSEDED = "superseded by a later row with the same external id"

_PRICE_QUANTUM = Decimal("0.000000001")

# Header keywords, matched against casefolded column labels.
_DATE_KEYWORDS = ("дата", "date")
_TIME_KEYWORDS = ("час", "time")
_AMOUNT_PREFIXES = ("сума", "amount")
_CURRENCY_PREFIXES = ("валют", "currency")
_PURPOSE_KEYWORDS = ("призн", "purpose", "description")


@dataclass(frozen=True)
class ClassifiedRow:
    """Exactly one of ``record`` / ``skip`` is set."""

    record: CanonicalRecord | None = None
    skip: SkipRecord | None = None

    @property
    def accepted(self) -> bool:
        return self.record is not None


@dataclass(frozen=True)
class DonationColumns:
    """Column labels of a donation sheet, located by header keywords."""

    date: str | None = None
    time: str | None = None
    amounts: tuple[str, ...] = ()
    currencies: tuple[str, ...] = ()
    purpose: str | None = None


def locate_donation_columns(headers: Iterable[str]) -> DonationColumns:
    """
    Find the donation columns in a header row.

    Amount and currency columns keep their sheet order: the first pair is the
    primary (local-currency) pair, the second the optional foreign pair.
    """
    labels = [(h, str(h).strip().casefold()) for h in headers if not str(h).startswith("_")]

    def find(keywords: tuple[str, ...], taken: set[str]) -> str | None:
        for original, folded in labels:
            if original not in taken and any(k in folded for k in keywords):
                return original
        return None

    date_col = find(_DATE_KEYWORDS, set())
    taken = {date_col} if date_col else set()
    time_col = find(_TIME_KEYWORDS, taken)
    if time_col:
        taken.add(time_col)

    amounts = tuple(o for o, f in labels if o not in taken and f.startswith(_AMOUNT_PREFIXES))
    currencies = tuple(o for o, f in labels if o not in taken and f.startswith(_CURRENCY_PREFIXES))
    taken.update(amounts, currencies)

    return DonationColumns(
        date=date_col,
        time=time_col,
        amounts=amounts,
        currencies=currencies,
        purpose=find(_PURPOSE_KEYWORDS, taken),
    )


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _first(row: Mapping[str, Any], *names: str) -> Any:
    """First non-blank value among alternative field names."""
    for name in names:
        value = row.get(name)
        if not _blank(value):
            return value
    return None


def _amount_errors(field_name: str, raw: Any, value: Decimal | None) -> list[str]:
    if _blank(raw):
        return [f"missing {field_name}"]
    if value is None:
        return [f"invalid {field_name}: {raw!r}"]
    if value < 0:
        return [f"invalid {field_name}: negative value {value}"]
    return []


def parse_line_item(raw: Any) -> LineItem | None:
    """
    Validate one act position. Returns None for an unimportable item.

    An explicit ``sum`` is authoritative and the unit price is derived from
    it; otherwise the sum is ``round(quantity * price, 2)``.
    """
    if not isinstance(raw, Mapping):
        return None
    name = clean_text(_first(raw, "product_name", "name"))
    key = clean_text(_first(raw, "product_id", "code")) or name
    if key is None:
        return None

    quantity = parse_amount(_first(raw, "qty", "quantity"))
    if quantity is None or quantity <= 0:
        return None

    sum_raw = _first(raw, "sum", "amount")
    price_raw = _first(raw, "price", "unit_price")
    try:
        if sum_raw is not None:
            line_sum = parse_amount(sum_raw)
            if line_sum is None or line_sum < 0:
                return None
            unit_price = (line_sum / quantity).quantize(_PRICE_QUANTUM, rounding=ROUND_HALF_UP)
        elif price_raw is not None:
            unit_price = parse_amount(price_raw)
            if unit_price is None or unit_price < 0:
                return None
            line_sum = round_money(quantity * unit_price)
        else:
            return None
    except InvalidOperation:
        return None

    return LineItem(
        product_key=key,
        product_name=name or key,
        quantity=quantity,
        unit_price=unit_price,
        line_sum=line_sum,
        category_name=clean_text(_first(raw, "product_cat", "category")),
    )


def supersede_duplicates(
    accepted: Sequence[tuple[CanonicalRecord, Mapping[str, Any]]],
) -> tuple[list[CanonicalRecord], list[SkipRecord]]:
    """
    Keep the last record per (kind, external_id) from ``(record, raw_row)`` pairs.

    Earlier records with the same key come back as superseded skips. Records
    without an external id are always kept.
    """
    last = {
        (record.kind, record.external_id): index
        for index, (record, _) in enumerate(accepted)
        if record.external_id
    }
    records: list[CanonicalRecord] = []
    skips: list[SkipRecord] = []
    for index, (record, raw_row) in enumerate(accepted):
        if record.external_id and last[(record.kind, record.external_id)] != index:
            skips.append(
                SkipRecord(
                    source_row=record.source_row,
                    category=SkipCategory.SUPERSEDED,
                    reasons=(REASON_SUPERSEDED,),
                    raw_row=to_json_safe(dict(raw_row)),
                )
            )
        else:
            records.append(record)
    return records, skips


class RowClassifier:
    """
    Classifies raw parser rows for one record kind at a time.

    Usage:
        classifier = RowClassifier(settings)
        result = classifier.classify(RecordKind.DONATION, row, source_row=1)
        if result.accepted:
            ...
    """

    def __init__(
        self,
        settings: ImportSettings = DEFAULT_SETTINGS,
        source_id: str | None = None,
    ):
        self._settings = settings
        self._source_id = source_id
        self._exclusions = compile_patterns(settings.purpose_exclusions)
        self._columns_cache: dict[tuple[str, ...], DonationColumns] = {}

    def classify(
        self,
        kind: RecordKind,
        raw_row: Mapping[str, Any],
        source_row: int,
    ) -> ClassifiedRow:
        match kind:
            case RecordKind.DONATION:
                return self._classify_donation(raw_row, source_row)
            case RecordKind.DISTRIBUTION_ACT:
                return self._classify_distribution_act(raw_row, source_row)
            case RecordKind.PROPERTY_ACT:
                return self._classify_property_act(raw_row, source_row)
        raise ValueError(f"Unknown record kind: {kind!r}")

    def classify_rows(
        self,
        kind: RecordKind,
        rows: Iterable[Mapping[str, Any]],
        start: int = 1,
    ) -> tuple[list[CanonicalRecord], list[SkipRecord]]:
        """Classify a whole row sequence; rows are numbered from ``start``."""
        accepted: list[tuple[CanonicalRecord, Mapping[str, Any]]] = []
        skips: list[SkipRecord] = []
        for source_row, row in enumerate(rows, start=start):
            result = self.classify(kind, row, source_row)
            if result.record is not None:
                accepted.append((result.record, row))
            else:
                skips.append(result.skip)
        records, superseded = supersede_duplicates(accepted)
        return records, skips + superseded

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _skip(
        category: SkipCategory,
        reasons: Iterable[str],
        raw_row: Mapping[str, Any],
        source_row: int,
    ) -> ClassifiedRow:
        return ClassifiedRow(
            skip=SkipRecord(
                source_row=source_row,
                category=category,
                reasons=tuple(reasons),
                raw_row=to_json_safe(dict(raw_row)),
            )
        )

    @staticmethod
    def _occurred_at(raw: Any, time_raw: Any, errors: list[str]):
        if _blank(raw):
            errors.append("missing occurred_at")
            return None
        value = parse_datetime(raw, time_raw)
        if value is None:
            shown = raw if _blank(time_raw) else f"{raw} {time_raw}"
            errors.append(f"invalid occurred_at: {shown!r}")
        return value

    def _currency(self, raw: Any) -> str:
        return normalize_currency(
            raw, self._settings.currency_aliases, self._settings.local_currency
        )

    def _excluded_by_purpose(self, text: str | None) -> bool:
        return matches_any(text, self._exclusions)

    # -------------------------------------------------------------------------
    # Donations
    # -------------------------------------------------------------------------

    def _donation_columns(self, row: Mapping[str, Any]) -> DonationColumns:
        headers = tuple(str(k) for k in row.keys())
        columns = self._columns_cache.get(headers)
        if columns is None:
            columns = locate_donation_columns(headers)
            self._columns_cache[headers] = columns
        return columns

    def _classify_donation(self, row: Mapping[str, Any], source_row: int) -> ClassifiedRow:
        cols = self._donation_columns(row)
        local = self._settings.local_currency
        errors: list[str] = []

        occurred_at = self._occurred_at(
            row.get(cols.date) if cols.date else None,
            row.get(cols.time) if cols.time else None,
            errors,
        )

        primary_raw = row.get(cols.amounts[0]) if cols.amounts else None
        primary = parse_amount(primary_raw)
        primary_currency = self._currency(
            row.get(cols.currencies[0]) if cols.currencies else None
        )

        secondary = None
        secondary_currency = local
        if len(cols.amounts) > 1:
            secondary_raw = row.get(cols.amounts[1])
            secondary = parse_amount(secondary_raw)
            secondary_currency = self._currency(
                row.get(cols.currencies[1]) if len(cols.currencies) > 1 else None
            )

        if secondary is not None and secondary_currency != local:
            # Foreign pair is the reportable amount; primary kept for reference.
            amount, currency, local_amount = secondary, secondary_currency, primary
            errors.extend(_amount_errors("amount", secondary_raw, secondary))
        else:
            amount, currency = primary, primary_currency
            local_amount = primary if primary_currency == local else None
            errors.extend(_amount_errors("amount", primary_raw, primary))

        if errors:
            return self._skip(SkipCategory.MALFORMED, errors, row, source_row)

        purpose = clean_text(row.get(cols.purpose)) if cols.purpose else None
        if self._excluded_by_purpose(purpose):
            return self._skip(SkipCategory.BUSINESS_RULE, [REASON_PURPOSE], row, source_row)

        return ClassifiedRow(
            record=CanonicalRecord(
                kind=RecordKind.DONATION,
                occurred_at=occurred_at,
                amount=amount,
                currency=currency,
                payload=DonationPayload(
                    local_amount=local_amount,
                    purpose=purpose or "",
                    source_id=self._source_id,
                ),
                source_row=source_row,
            )
        )

    # -------------------------------------------------------------------------
    # Acts
    # -------------------------------------------------------------------------

    def _act_items(self, row: Mapping[str, Any]) -> tuple[LineItem, ...]:
        raw_items = row.get("items")
        if not isinstance(raw_items, list):
            return ()
        return tuple(item for item in map(parse_line_item, raw_items) if item is not None)

    @staticmethod
    def _act_amount(
        row: Mapping[str, Any],
        names: tuple[str, ...],
        items: tuple[LineItem, ...],
        errors: list[str],
    ) -> Decimal:
        raw = _first(row, *names)
        if raw is None:
            return sum((item.line_sum for item in items), Decimal("0"))
        value = parse_amount(raw)
        errors.extend(_amount_errors("amount", raw, value))
        return value if value is not None else Decimal("0")

    def _classify_distribution_act(
        self, row: Mapping[str, Any], source_row: int
    ) -> ClassifiedRow:
        classification = remap_classification(
            _first(row, "receiver", "recipient"),
            _first(row, "receiver_group", "recipient_group"),
            self._settings.classification_rules,
        )
        if not classification.allowed:
            return self._skip(
                SkipCategory.BUSINESS_RULE, [REASON_CLASSIFICATION], row, source_row
            )

        errors: list[str] = []
        occurred_at = self._occurred_at(_first(row, "date", "act_date"), row.get("time"), errors)
        if not classification.label:
            errors.append("missing receiver")
        items = self._act_items(row)
        amount = self._act_amount(row, ("total_sum", "total_amount"), items, errors)
        currency = self._currency(row.get("currency"))
        if not items:
            errors.append("no importable line items")
        if errors:
            return self._skip(SkipCategory.MALFORMED, errors, row, source_row)

        note = clean_text(_first(row, "comment", "description", "purpose"))
        if self._excluded_by_purpose(note):
            return self._skip(SkipCategory.BUSINESS_RULE, [REASON_PURPOSE], row, source_row)

        act_number = clean_text(_first(row, "act_number", "number"))
        return ClassifiedRow(
            record=CanonicalRecord(
                kind=RecordKind.DISTRIBUTION_ACT,
                occurred_at=occurred_at,
                amount=amount,
                currency=currency,
                payload=DistributionActPayload(
                    receiver=classification.label,
                    receiver_group=clean_text(_first(row, "receiver_group", "recipient_group")),
                    act_number=act_number,
                ),
                line_items=items,
                external_id=clean_text(row.get("id")) or act_number,
                note=note,
                source_row=source_row,
            )
        )

    def _classify_property_act(self, row: Mapping[str, Any], source_row: int) -> ClassifiedRow:
        errors: list[str] = []
        act_number = clean_text(_first(row, "act_number", "number"))
        if act_number is None:
            errors.append("missing act_number")
        occurred_at = self._occurred_at(_first(row, "act_date", "date"), row.get("time"), errors)
        donor = clean_text(_first(row, "donor", "giver"))
        if donor is None:
            errors.append("missing donor")
        items = self._act_items(row)
        amount = self._act_amount(row, ("total_amount", "total_sum"), items, errors)
        currency = self._currency(row.get("currency"))
        if not items:
            errors.append("no importable line items")
        if errors:
            return self._skip(SkipCategory.MALFORMED, errors, row, source_row)

        note = clean_text(_first(row, "comment", "description", "purpose"))
        if self._excluded_by_purpose(note):
            return self._skip(SkipCategory.BUSINESS_RULE, [REASON_PURPOSE], row, source_row)

        return ClassifiedRow(
            record=CanonicalRecord(
                kind=RecordKind.PROPERTY_ACT,
                occurred_at=occurred_at,
                amount=amount,
                currency=currency,
                payload=PropertyActPayload(act_number=act_number, donor=donor),
                line_items=items,
                external_id=clean_text(row.get("act_id")) or act_number,
                note=note,
                source_row=source_row,
            )
        )
