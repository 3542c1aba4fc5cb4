"""
Broker schemas.

Each broker export is described by a static ``BrokerSchema``. The column
layout is a tagged variant:

* ``FixedLayout`` ("fixed") addresses columns by offset and may declare
  zones whose overflow can be repaired.
* ``HeaderLayout`` ("header") addresses columns by header name, for
  exports whose column order drifts between file vintages. It is bound
  to a concrete header with ``bind()`` before any row is touched.

Schemas validate themselves on construction and raise ``SchemaError``.
"""

from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Union

from freight_doctor.classifiers import CLASSIFIERS, get_classifier, is_empty
from freight_doctor.errors import SchemaError
from freight_doctor.headers import validate_synonyms
from freight_doctor.normalization import IntegerScaleRule

ZONE_KINDS = ("address", "description")
DECIMAL_SWEEPS = ("locale", "leading", "off")


@dataclass(frozen=True)
class FieldRef:
    """Header names for one logical field, in priority order."""

    names: tuple[str, ...]
    min_index: int = 0

    def resolve(self, header: Sequence[Any]) -> int | None:
        cells = [str(h).strip().lower() if h is not None else "" for h in header]
        for name in self.names:
            wanted = name.strip().lower()
            for idx in range(self.min_index, len(cells)):
                if cells[idx] == wanted:
                    return idx
        return None


def ref(*names: str, min_index: int = 0) -> FieldRef:
    return FieldRef(tuple(names), min_index)


@dataclass(frozen=True)
class Anchor:
    column: Any
    name: str
    classifier: str
    required: bool = True

    def __post_init__(self) -> None:
        if self.classifier not in CLASSIFIERS:
            raise SchemaError(
                f"Anchor '{self.name}' uses unknown classifier '{self.classifier}'. "
                f"Known: {sorted(CLASSIFIERS)}"
            )

    def accepts(self, value: Any) -> bool:
        if not self.required and is_empty(value):
            return True
        return get_classifier(self.classifier)(value)


@dataclass(frozen=True)
class Zone:
    name: str
    start: int
    end: int
    anchors: tuple[Anchor, ...] = ()
    text_column: int | None = None
    shift_anchor: int | None = None
    window: int = 0
    kind: str = "address"
    confirm: tuple[tuple[int, str], ...] = ()
    gap_check: bool = False

    def __post_init__(self) -> None:
        if self.start < 0 or self.end < self.start:
            raise SchemaError(f"Zone '{self.name}' has an invalid range {self.start}-{self.end}")
        if self.window < 0:
            raise SchemaError(f"Zone '{self.name}' has a negative search window")
        if self.kind not in ZONE_KINDS:
            raise SchemaError(f"Zone '{self.name}' has unknown kind '{self.kind}'")
        for anchor in self.anchors:
            if not (self.start <= anchor.column <= self.end):
                raise SchemaError(
                    f"Anchor '{anchor.name}' (col {anchor.column}) lies outside zone '{self.name}'"
                )
        for offset, classifier in self.confirm:
            if offset < 1:
                raise SchemaError(f"Zone '{self.name}' confirm offsets must be positive")
            if classifier not in CLASSIFIERS:
                raise SchemaError(f"Zone '{self.name}' confirm uses unknown classifier '{classifier}'")

        if not self.repairs_shifts:
            return
        if self.text_column is None or self.shift_anchor is None:
            raise SchemaError(f"Zone '{self.name}' repairs shifts but lacks a text column or shift anchor")
        for label, col in (("text_column", self.text_column), ("shift_anchor", self.shift_anchor)):
            if not (self.start <= col <= self.end):
                raise SchemaError(f"Zone '{self.name}' {label} {col} lies outside {self.start}-{self.end}")
        if self.text_column >= self.shift_anchor:
            raise SchemaError(f"Zone '{self.name}' text column must precede its shift anchor")
        if self.anchor_at(self.shift_anchor) is None:
            raise SchemaError(f"Zone '{self.name}' shift anchor {self.shift_anchor} has no Anchor declaration")

    @property
    def repairs_shifts(self) -> bool:
        return self.window > 0

    def anchor_at(self, column: int) -> Anchor | None:
        for anchor in self.anchors:
            if anchor.column == column:
                return anchor
        return None

    def is_blank(self, row: Sequence[Any]) -> bool:
        return all(is_empty(row[c]) for c in range(self.start, min(self.end + 1, len(row))))


def _check_columns(label: str, columns: Sequence[Any]) -> None:
    for col in columns:
        if not isinstance(col, int) or col < 0:
            raise SchemaError(f"{label} must be non-negative column offsets, got {col!r}")


@dataclass(frozen=True)
class FixedLayout:
    zones: tuple[Zone, ...] = ()
    anchors: tuple[Anchor, ...] = ()
    numeric_columns: tuple[int, ...] = ()
    date_columns: tuple[int, ...] = ()
    scale_rules: tuple[IntegerScaleRule, ...] = ()
    tag: str = field(default="fixed", init=False)

    def __post_init__(self) -> None:
        previous: Zone | None = None
        for zone in self.zones:
            if previous is not None and zone.start <= previous.end:
                raise SchemaError(
                    f"Zones '{previous.name}' and '{zone.name}' overlap or are out of order"
                )
            previous = zone
        _check_columns("numeric_columns", self.numeric_columns)
        _check_columns("date_columns", self.date_columns)
        _check_columns("anchor columns", [a.column for a in self.anchors])
        for rule in self.scale_rules:
            _check_columns(f"scale rule '{rule.name}' columns", rule.columns())

    def all_anchors(self) -> list[tuple[Zone | None, Anchor]]:
        pairs: list[tuple[Zone | None, Anchor]] = [(zone, a) for zone in self.zones for a in zone.anchors]
        pairs.extend((None, a) for a in self.anchors)
        return pairs

    def next_zone(self, zone: Zone) -> Zone | None:
        idx = self.zones.index(zone)
        for candidate in self.zones[idx + 1:]:
            if candidate.repairs_shifts:
                return candidate
        return None


@dataclass(frozen=True)
class HeaderLayout:
    anchors: tuple[Anchor, ...] = ()
    numeric_fields: tuple[FieldRef, ...] = ()
    date_fields: tuple[FieldRef, ...] = ()
    scale_rules: tuple[IntegerScaleRule, ...] = ()
    tag: str = field(default="header", init=False)

    def __post_init__(self) -> None:
        for anchor in self.anchors:
            if not isinstance(anchor.column, FieldRef):
                raise SchemaError(f"Header layout anchor '{anchor.name}' must address a FieldRef")

    def bind(self, header: Sequence[Any]) -> FixedLayout:
        """Resolve header names to offsets; fields the header lacks are skipped."""
        anchors = []
        for anchor in self.anchors:
            col = anchor.column.resolve(header)
            if col is not None:
                anchors.append(dataclasses.replace(anchor, column=col))

        numeric = _resolve_all(self.numeric_fields, header)
        dates = tuple(c for c in _resolve_all(self.date_fields, header) if c not in numeric)

        rules = []
        for rule in self.scale_rules:
            weights = _resolve_all(rule.weight_columns, header)
            monies = _resolve_all(rule.money_columns, header)
            if not weights or not monies:
                continue
            rules.append(dataclasses.replace(
                rule,
                weight_columns=weights,
                money_columns=monies,
                companion_columns=_resolve_all(rule.companion_columns, header),
            ))

        return FixedLayout(
            anchors=tuple(anchors),
            numeric_columns=numeric,
            date_columns=dates,
            scale_rules=tuple(rules),
        )


Layout = Union[FixedLayout, HeaderLayout]


def _resolve_all(refs: Sequence[FieldRef], header: Sequence[Any]) -> tuple[int, ...]:
    seen: list[int] = []
    for field_ref in refs:
        col = field_ref.resolve(header)
        if col is not None and col not in seen:
            seen.append(col)
    return tuple(seen)


@dataclass(frozen=True)
class BrokerSchema:
    broker_id: str
    label: str
    layout: Layout
    header_rows: int = 1
    header_start_row: int = 0
    data_start_row: int = 1
    min_filled_cells: int = 2
    csv_delimiter: str = ","
    sheet_pattern: str | None = None
    sheet_hint: str | None = None
    decimal_sweep: str = "leading"
    clean_text: bool = False
    synonyms: Mapping[str, str] = field(default_factory=dict)
    secondary_columns: tuple[str, ...] = ()
    data_width: int | None = None

    def __post_init__(self) -> None:
        if self.header_rows < 0 or self.header_start_row < 0:
            raise SchemaError(f"{self.broker_id}: header rows and start row must be non-negative")
        if self.data_start_row < self.header_start_row + self.header_rows:
            raise SchemaError(
                f"{self.broker_id}: data_start_row {self.data_start_row} overlaps the header block "
                f"({self.header_start_row} + {self.header_rows})"
            )
        if self.min_filled_cells < 1:
            raise SchemaError(f"{self.broker_id}: min_filled_cells must be at least 1")
        if self.decimal_sweep not in DECIMAL_SWEEPS:
            raise SchemaError(f"{self.broker_id}: decimal_sweep must be one of {DECIMAL_SWEEPS}")
        if self.data_width is not None and self.data_width < 1:
            raise SchemaError(f"{self.broker_id}: data_width must be positive")
        if self.sheet_pattern is not None:
            try:
                re.compile(self.sheet_pattern)
            except re.error as exc:
                raise SchemaError(f"{self.broker_id}: invalid sheet_pattern: {exc}") from exc
        validate_synonyms(self.synonyms)

    @property
    def tag(self) -> str:
        return self.layout.tag

    def is_footer_row(self, row: Sequence[Any] | None) -> bool:
        """A row counts as data only with at least ``min_filled_cells`` non-empty cells."""
        if not row or len(row) < self.min_filled_cells:
            return True
        filled = sum(1 for cell in row if not is_empty(cell))
        return filled < self.min_filled_cells

    def resolve_layout(self, header: Sequence[Any] | None = None) -> FixedLayout:
        if isinstance(self.layout, FixedLayout):
            return self.layout
        if header is None:
            raise SchemaError(f"{self.broker_id}: header-addressed layout needs the file header to bind")
        return self.layout.bind(header)

    def with_synonyms(self, extra: Mapping[str, str]) -> "BrokerSchema":
        merged = dict(self.synonyms)
        merged.update(extra)
        return dataclasses.replace(self, synonyms=merged)


# ══════════════════════════════════════════════════════════════════════════
# DHL EXPRESS
# ══════════════════════════════════════════════════════════════════════════

DHL_LAYOUT = FixedLayout(
    zones=(
        Zone(
            "Declaration", 0, 1,
            anchors=(
                Anchor(0, "Date of Declaration", "date"),
                Anchor(1, "EORI Number", "eori", required=False),
            ),
        ),
        # Always empty in real exports; validated, never shifted.
        Zone(
            "Seller", 15, 19,
            anchors=(
                Anchor(18, "Seller Postcode", "postcode", required=False),
                Anchor(19, "Seller Country", "country", required=False),
            ),
        ),
        Zone(
            "Shipper", 20, 25,
            anchors=(Anchor(24, "Shipper Country", "country"),),
            text_column=21,
            shift_anchor=24,
            window=2,
        ),
        Zone(
            "Consignee", 26, 30,
            anchors=(Anchor(30, "Consignee Country", "country"),),
            text_column=27,
            shift_anchor=30,
            window=2,
        ),
        Zone(
            "Delivery", 31, 35,
            anchors=(
                Anchor(31, "Incoterm", "incoterm", required=False),
                Anchor(33, "Freight EUR", "numeric"),
                Anchor(34, "Weight", "numeric", required=False),
            ),
            text_column=32,
            shift_anchor=33,
            window=3,
            confirm=((1, "numeric"),),
            gap_check=True,
        ),
        Zone(
            "Goods", 109, 128,
            anchors=(
                Anchor(110, "HS Code", "tariff"),
                Anchor(111, "Country of Origin", "country", required=False),
                Anchor(112, "Preference", "procedure", required=False),
                Anchor(113, "Procedure Code", "procedure", required=False),
                Anchor(115, "Statistical Measure", "measure", required=False),
                Anchor(118, "Currency", "currency", required=False),
            ),
            text_column=109,
            shift_anchor=110,
            window=8,
            kind="description",
            confirm=((1, "country"), (2, "procedure"), (3, "procedure")),
            gap_check=True,
        ),
    ),
    numeric_columns=(33, 34, 67, 71, 75, 76, 77, 116, 117, 119, 120, 121, 123, 124, 125, 127, 128),
    date_columns=(0,),
)

# ══════════════════════════════════════════════════════════════════════════
# FEDEX
# ══════════════════════════════════════════════════════════════════════════

FEDEX_LAYOUT = FixedLayout(
    anchors=(
        Anchor(21, "VERSENDUNGSLAND", "country", required=False),
        Anchor(23, "WKZ", "currency", required=False),
        Anchor(56, "TARIFNUMMER", "tariff", required=False),
        Anchor(57, "URSPRUNGSLAND", "country", required=False),
    ),
    numeric_columns=(22, 24, 27, 44, 49, 53, 60, 61, 65, 66, 67, 68, 70, 73, 85, 86, 88, 89, 90, 91),
    date_columns=(7,),
)

# ══════════════════════════════════════════════════════════════════════════
# UPS
# ══════════════════════════════════════════════════════════════════════════

UPS_LAYOUT = FixedLayout(
    anchors=(
        Anchor(0, "Datum der Zollanmeldung", "date", required=False),
        Anchor(9, "Waehrung", "currency", required=False),
        Anchor(23, "Versendungsland", "country", required=False),
        Anchor(24, "Ursprungsland", "country", required=False),
        Anchor(28, "Zolltarifnummer", "tariff", required=False),
        Anchor(42, "Land", "country", required=False),
        Anchor(44, "Land4", "country", required=False),
        Anchor(45, "Lieferbedingungsschluessel", "incoterm", required=False),
    ),
    numeric_columns=(
        5, 6, 8, 10, 11, 15, 16, 17, 19, 20, 21,
        30, 31, 32, 33, 34, 35, 36, 37, 38, 39, 40, 47,
    ),
)

# ══════════════════════════════════════════════════════════════════════════
# DSV
# ══════════════════════════════════════════════════════════════════════════

# Legacy / alternate header name -> canonical name in the widest layout.
DSV_SYNONYMS = {
    # Sea 92-col -> 138/158-col renames
    "Registrienummer/MRN": "Registriernummer/MRN",
    "Versender EORI": "Versender CZ EORI",
    "Versender Name": "CZ Name",
    "Versender Ländercode": "CZ Ländercode",
    "Empfänger EORI": "Empfänger CN EORI",
    "Empfänger Name": "CN Name",
    "Empfänger Ländercode": "CN Ländercode",
    "Anmelder EORI": "Anmelder DT EORI",
    "Anmelder Name": "DT Name",
    "Anmelder Ländercode": "DT Ländercode",
    "Addressierte Zollstelle": "Zollstelle",
    "AufschubHZAZoll": "HZAZoll",
    "AufschubkontoZoll": "KontoZoll",
    "AufschubTextZoll": "TextZoll",
    "AufschubEORIZoll": "EORIZoll",
    "AufschubKennzeichenEigenZoll": "KennzeichenEigenZoll",
    "AufschubArtEust": "ArtEust",
    "AufschubHZAEust": "HZAEust",
    "AufschubKontoEusT": "KontoEusT",
    "AufschubTextEust": "TextEust",
    "AufschubEORIEust": "EORIEust",
    "AufschubKennzeichenEigenEust": "KennzeichenEigenEust",
    "Vorraussichtliche Zollabgabe": "Vorausstl. Zollabgabe",
    "Vorraussichtliche Zollsatzabgabe": "Vorausstl. Zollsatzabgabe",
    "Vorraussichtliche Eustabgabe": "Vorausstl. Eustabgabe",
    "Vorraussichtliche Eustsatzabgabe": "Vorausstl. Eustsatzabgabe",
    "DV1Rechnugnswährung": "Währung",
    "DV1UmrechnungsWährung": "Währung",
    "DV1Versicherungswährung": "Währung",
    "DV1Luftfrachtkostenwährung": "Währung",
    "DV1Frachtkostenwährung": "Währung",
    "DV1MaterialienWährung": "Währung",
    "Vorpapiere Registriernummer": "Vorpapiere Reg.nummer",
    # German air freight extras
    "Verfahren_1": "Verfahren",
    "SonderAbgabeAntidumping": "AbgabeAntidumping",
    # English air freight ("Import Report Template") -> German sea names
    "Formal Entry Number": "Registriernummer/MRN",
    "Line No": "PositionNo",
    "Importer Name": "CN Name",
    "EORI Number / Tax ID / Equivalent": "Empfänger CN EORI",
    "Entry Date \n(ddmmyy)": "Anlagedatum",
    "Port of Entry": "Zollstelle",
    "Declaration Country": "CN Ländercode",
    "Country of Origin": "Ursprung",
    "Shipping Country": "CZ Ländercode",
    "HTS Code (Tariff Number)": "Warentarifnummer",
    "Item Description": "Warenbezeichnung",
    "Invoice value": "Rechnungsbetrag",
    "Invoice value \n": "Rechnungsbetrag",
    "Invoice currency": "Rechnungswährung",
    "Exchange Rate": "Rechnungskurs",
    "Declared Value": "Zollwert",
    "Duty Paid": "AbgabeZoll",
    "Duty Rate %": "AbgabeZollsatz",
    "VAT Value": "Eustwert",
    "VAT Paid": "AbgabeEust",
    "VAT Rate %": "AbgabeEustsatz",
    "Anti Dumping / Countervailing Duties": "AbgabeAntidumping",
    "Special Trade Program (e.g. FTA)": "Beguenstigung",
    "Supplier Name / Shipper Name": "CZ Name",
    "Custom broker company name": "DT Name",
    "Incoterms": "Liefercode",
    "Customs Quantity": "Aussenhandelstatistische Menge",
    "Unit of measurement": "Maßeinheit",
    "Net Mass (in kg)": "Eigenmasse",
    "Gross Mass (in kg)": "Rohmasse",
    "Gross Mass (in kg) ": "Rohmasse",
    "Broker Reference Number": "Bezugsnummer/LRN",
    "AWB / Bill Of Lading": "Vorpapiere Reg.nummer",
    "Customs Value currency": "Zollwertwährung",
}

# English air freight columns with no sea-layout equivalent.
DSV_AIR_ONLY_COLUMNS = (
    "Arrival Date",
    "Invoice Number",
    "Other Fees / Taxes",
    "Transport Mode",
    "Entry Type",
    "Branch",
    "Site Name",
    "Site Number",
    "CBAM related goods ? \nY/N",
    "CBAM related goods ?\nY/N",
    "CBAM goods category *",
    "CBAM Exeption applied ? \nY/N",
    "CBAM Exeption applied ?\nY/N",
    "CBAM Type of exeption",
    "Voraus. Gesamtabgaben",
)

DSV_GROSS_WEIGHT = ref("Rohmasse", "Gesamtgewicht", "Gross Mass (in kg)")
DSV_NET_WEIGHT = ref("Eigenmasse", "Net Mass (in kg)")
DSV_INVOICE = ref("Rechnungsbetrag", "Invoice value")
DSV_VAT_AMOUNT = ref("AbgabeEust", "Vorausstl. Eustabgabe", "Vorraussichtliche Eustabgabe", "VAT Paid")
DSV_CUSTOMS_VALUE = ref("Zollwert", "Declared Value")
DSV_DUTY_AMOUNT = ref("AbgabeZoll", "Vorausstl. Zollabgabe", "Vorraussichtliche Zollabgabe", "Duty Paid")
DSV_FREIGHT = ref("DV1Frachtkosten", "DV1Luftfrachtkosten")

DSV_INTEGER_CENTS = IntegerScaleRule(
    name="dsv-integer-cents",
    weight_columns=(DSV_GROSS_WEIGHT, DSV_NET_WEIGHT),
    money_columns=(DSV_INVOICE,),
    companion_columns=(DSV_VAT_AMOUNT, DSV_CUSTOMS_VALUE, DSV_DUTY_AMOUNT, DSV_FREIGHT),
)

DSV_LAYOUT = HeaderLayout(
    anchors=(
        Anchor(ref("Warentarifnummer", "HTS Code (Tariff Number)"), "Warentarifnummer", "tariff", required=False),
        Anchor(ref("CZ Ländercode", "Versender Ländercode", "Shipping Country"), "CZ Ländercode", "country", required=False),
        Anchor(ref("CN Ländercode", "Empfänger Ländercode", "Declaration Country"), "CN Ländercode", "country", required=False),
        Anchor(ref("Rechnungswährung", "Invoice currency"), "Rechnungswährung", "currency", required=False),
        # "Verfahren" appears twice; the position-level procedure code is the later one.
        Anchor(ref("Verfahren", min_index=40), "Verfahren", "procedure", required=False),
    ),
    numeric_fields=(
        DSV_INVOICE,
        ref("Rechnungskurs", "Exchange Rate"),
        DSV_DUTY_AMOUNT,
        ref("AbgabeZollsatz", "Vorausstl. Zollsatzabgabe", "Vorraussichtliche Zollsatzabgabe", "Duty Rate %"),
        DSV_VAT_AMOUNT,
        ref("AbgabeEustsatz", "Vorausstl. Eustsatzabgabe", "Vorraussichtliche Eustsatzabgabe", "VAT Rate %"),
        DSV_CUSTOMS_VALUE,
        ref("Artikelpreis"),
        DSV_GROSS_WEIGHT,
        DSV_NET_WEIGHT,
        DSV_FREIGHT,
        ref("AnzahlPackstücke"),
        ref("Statistischerwert"),
    ),
    date_fields=(
        ref("Anlagedatum", "Entry Date \n(ddmmyy)"),
        ref("Überlassungsdatum"),
    ),
    scale_rules=(DSV_INTEGER_CENTS,),
)

# ══════════════════════════════════════════════════════════════════════════
# REGISTRY
# ══════════════════════════════════════════════════════════════════════════

BROKERS = {
    "DHL": BrokerSchema(
        broker_id="DHL",
        label="DHL Express",
        layout=DHL_LAYOUT,
        header_rows=2,
        data_start_row=2,
        min_filled_cells=3,
        decimal_sweep="locale",
    ),
    "FEDEX": BrokerSchema(
        broker_id="FEDEX",
        label="FedEx",
        layout=FEDEX_LAYOUT,
        header_start_row=13,
        data_start_row=14,
        min_filled_cells=3,
        decimal_sweep="locale",
        clean_text=True,
    ),
    "KN": BrokerSchema(
        broker_id="KN",
        label="Kuehne + Nagel",
        layout=FixedLayout(),
    ),
    "DSV": BrokerSchema(
        broker_id="DSV",
        label="DSV",
        layout=DSV_LAYOUT,
        csv_delimiter=";",
        sheet_pattern=r"^(importzoll|hella|import report)",
        sheet_hint="luft",
        decimal_sweep="locale",
        synonyms=DSV_SYNONYMS,
        secondary_columns=DSV_AIR_ONLY_COLUMNS,
    ),
    "SCHENKER": BrokerSchema(
        broker_id="SCHENKER",
        label="DB Schenker",
        layout=FixedLayout(),
    ),
    "UPS": BrokerSchema(
        broker_id="UPS",
        label="UPS",
        layout=UPS_LAYOUT,
        decimal_sweep="locale",
        clean_text=True,
        data_width=62,
    ),
}


def get_broker(broker_id: str) -> BrokerSchema:
    try:
        return BROKERS[broker_id.strip().upper()]
    except KeyError:
        raise SchemaError(f"Unknown broker '{broker_id}'. Known: {sorted(BROKERS)}") from None
