"""Header, axis and vehicle vocabulary used to read ratebooks.

Everything the classifier, the vehicle resolver and the extractors know
about how funders label their sheets lives here, in one immutable
``PatternLibrary``. Components take the library as a parameter and fall
back to ``DEFAULT_PATTERNS``, so tests and provider-specific callers can
inject their own vocabulary without touching global state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property

from ratebook_import.models import ContractType

# Target field -> header synonyms. Order breaks ties between equal matches.
DEFAULT_HEADER_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "cap_code",
        (
            "cap code",
            "cap_code",
            "capcode",
            "cap-code",
            "lookup code",
            "lookup_code",
            "lookupcode",
        ),
    ),
    (
        "cap_id",
        ("cap id", "cap_id", "capid", "cap-id", "dataoriginatorcode"),
    ),
    ("manufacturer", ("manufacturer", "make", "brand", "marque", "oem")),
    ("model", ("model", "model name", "model_name", "modelname", "range")),
    (
        "variant",
        (
            "variant",
            "derivative",
            "vehicle description",
            "vehicledescription",
            "description",
            "trim",
            "specification",
        ),
    ),
    (
        "term",
        (
            "term",
            "contract term",
            "contract_term",
            "contractterm",
            "months",
            "duration",
        ),
    ),
    (
        "annual_mileage",
        (
            "annual mileage",
            "annual_mileage",
            "annualmileage",
            "mileage",
            "miles",
            "annual miles",
        ),
    ),
    (
        "monthly_rental",
        (
            "monthly rental",
            "monthly_rental",
            "rental",
            "monthly",
            "net rental",
            "net_rental",
            "netrental",
            "price",
            "rate",
            "monthly payment",
            "payment",
        ),
    ),
    (
        "payment_profile",
        ("payment profile", "payment_profile", "profile", "rental profile"),
    ),
    (
        "otr",
        (
            "otr",
            "otr price",
            "otr_price",
            "on the road",
            "on the road price",
            "on_the_road",
            "ontheroad",
        ),
    ),
    (
        "p11d",
        (
            "p11d",
            "p11_d",
            "p11d value",
            "p11d_value",
            "p11d price",
            "list price",
            "list_price",
            "listprice",
        ),
    ),
    (
        "co2",
        ("co2", "co2 g/km", "co2_g_per_km", "co2gkm", "co2_emissions", "emissions"),
    ),
    ("fuel_type", ("fuel type", "fuel_type", "fueltype", "fuel")),
    ("transmission", ("transmission", "gearbox", "trans")),
    (
        "lease_rental",
        ("lease rental", "lease_rental", "finance rental", "finance_rental"),
    ),
    (
        "service_rental",
        (
            "service rental",
            "service_rental",
            "maintenance rental",
            "maint rental",
        ),
    ),
    (
        "excess_mileage_ppm",
        (
            "excess mileage",
            "excess_mileage",
            "excess_mileage_ppm",
            "excess ppm",
            "ppm",
        ),
    ),
    ("body_style", ("body style", "body_style", "bodystyle", "body type", "body")),
    ("model_year", ("model year", "model_year", "modelyear")),
)

# Upper-cased sheet-name prefix -> canonical manufacturer name
DEFAULT_MANUFACTURERS: tuple[tuple[str, str], ...] = (
    ("ALFA ROMEO", "Alfa Romeo"),
    ("AUDI", "Audi"),
    ("BMW", "BMW"),
    ("BYD", "BYD"),
    ("CITROEN", "Citroen"),
    ("CUPRA", "Cupra"),
    ("DACIA", "Dacia"),
    ("FIAT", "Fiat"),
    ("FORD", "Ford"),
    ("HONDA", "Honda"),
    ("HYUNDAI", "Hyundai"),
    ("JAGUAR", "Jaguar"),
    ("KIA", "Kia"),
    ("LAND ROVER", "Land Rover"),
    ("LEXUS", "Lexus"),
    ("MAZDA", "Mazda"),
    ("MERCEDES-BENZ", "Mercedes-Benz"),
    ("MERCEDES BENZ", "Mercedes-Benz"),
    ("MERCEDES", "Mercedes-Benz"),
    ("MG", "MG"),
    ("MINI", "MINI"),
    ("NISSAN", "Nissan"),
    ("PEUGEOT", "Peugeot"),
    ("POLESTAR", "Polestar"),
    ("RENAULT", "Renault"),
    ("SEAT", "SEAT"),
    ("SKODA", "Skoda"),
    ("TESLA", "Tesla"),
    ("TOYOTA", "Toyota"),
    ("VAUXHALL", "Vauxhall"),
    ("VOLKSWAGEN", "Volkswagen"),
    ("VOLVO", "Volvo"),
    ("VW", "Volkswagen"),
)

DEFAULT_MODEL_NAMES: tuple[str, ...] = (
    "A1", "A3", "A4", "A5", "A6", "A7", "A8", "Q2", "Q3", "Q4", "Q5", "Q7", "Q8",
    "e-tron", "1 Series", "2 Series", "3 Series", "4 Series", "5 Series",
    "X1", "X2", "X3", "X5", "iX", "C-Class", "E-Class", "S-Class",
    "GLA", "GLC", "GLE", "EQA", "EQB", "EQC", "EQE", "EQS",
    "Golf", "Polo", "Tiguan", "T-Roc", "ID.3", "ID.4", "ID.5",
    "Tucson", "Kona", "Ioniq 5", "Ioniq 6", "Ioniq", "Santa Fe",
    "Sportage", "Niro", "EV6", "EV9", "Sorento",
    "Mustang Mach-E", "Focus", "Fiesta", "Puma", "Kuga",
    "Corsa", "Astra", "Mokka", "Grandland",
    "e-2008", "e-208", "2008", "3008", "208", "308",
    "Atto 2", "Atto 3", "Seal U", "Seal", "Dolphin", "Tang",
    "Model 3", "Model Y", "Qashqai", "Juke", "Yaris", "Corolla", "C-HR",
    "Octavia", "Enyaq", "Kodiaq", "Formentor", "Born", "XC40", "XC60", "EX30",
)

# Whole-cell section markers -> contract type
DEFAULT_CONTRACT_TYPE_TOKENS: tuple[tuple[str, ContractType], ...] = (
    ("BCH", ContractType.BCH),
    ("PCH", ContractType.PCH),
    ("CH", ContractType.CH),
    ("CHNM", ContractType.CHNM),
    ("PCHNM", ContractType.PCHNM),
    ("BSSNL", ContractType.BSSNL),
    ("HCH", ContractType.HCH),
    ("BUSINESS CONTRACT HIRE", ContractType.BCH),
    ("PERSONAL CONTRACT HIRE", ContractType.PCH),
    ("CONTRACT HIRE", ContractType.CH),
    ("CONTRACT HIRE NON MAINTAINED", ContractType.CHNM),
    ("PERSONAL CONTRACT HIRE NON MAINTAINED", ContractType.PCHNM),
    ("SALARY SACRIFICE", ContractType.BSSNL),
)

# Common axis labels, published as reference data
COMMON_PAYMENT_PROFILES: tuple[str, ...] = (
    "1+23", "1+35", "1+47", "3+23", "3+33", "3+35", "3+45", "3+47",
    "6+23", "6+33", "6+35", "6+42", "6+47", "9+23", "9+35", "9+47",
    "12+23", "12+35", "12+47",
)
COMMON_MILEAGE_BANDS: tuple[int, ...] = (
    5000, 6000, 8000, 10000, 12000, 15000, 20000, 25000, 30000,
)

_PAYMENT_PROFILE_RE = re.compile(r"^(\d{1,2})\s*\+\s*(\d{1,2})$")
_MILEAGE_THOUSANDS_RE = re.compile(r"^(\d{1,3})\s*k(?![a-z0-9])")
_MILEAGE_FULL_RE = re.compile(r"^(\d{4,5})(?:\s*(?:miles?|mpa|pa))?$")
_CAP_CODE_RE = re.compile(r"^[A-Z]{2,4}\d{2,3}[A-Z0-9\s]{5,}$", re.IGNORECASE)
_CAP_ID_RE = re.compile(r"^\d{5,6}$")
_EMBEDDED_CAP_ID_RE = re.compile(r"(?<!\d)(\d{5,6})(?!\d)")
_QUOTE_NUMBER_RE = re.compile(r"\d{7,}")
_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


@dataclass(frozen=True)
class HeaderMatch:
    """Result of matching one header cell against the library."""

    target_field: str
    confidence: int
    pattern: str


@dataclass(frozen=True)
class PatternLibrary:
    """Immutable vocabulary for recognising ratebook structure.

    Attributes:
        header_patterns: Ordered (target field, synonyms) pairs.
        manufacturers: (upper-case prefix, canonical name) pairs.
        model_names: Known model names, matched on word boundaries.
        contract_type_tokens: (whole-cell marker, contract type) pairs.
        maintained_tokens: Substrings marking a maintained sub-column.
        non_maintained_tokens: Substrings marking an unmaintained sub-column.
    """

    header_patterns: tuple[tuple[str, tuple[str, ...]], ...] = DEFAULT_HEADER_PATTERNS
    manufacturers: tuple[tuple[str, str], ...] = DEFAULT_MANUFACTURERS
    model_names: tuple[str, ...] = DEFAULT_MODEL_NAMES
    contract_type_tokens: tuple[tuple[str, ContractType], ...] = (
        DEFAULT_CONTRACT_TYPE_TOKENS
    )
    maintained_tokens: tuple[str, ...] = ("maint", "with")
    non_maintained_tokens: tuple[str, ...] = ("non", "without", "no maint")
    exact_maintained_labels: tuple[str, ...] = ("m",)
    exact_non_maintained_labels: tuple[str, ...] = ("nm",)

    # ------------------------------------------------------------------ #
    # Axis labels
    # ------------------------------------------------------------------ #

    def parse_payment_profile(self, text: str) -> tuple[int, int] | None:
        """Parse ``"3+35"`` into (initial months, subsequent payments)."""
        match = _PAYMENT_PROFILE_RE.match(text.strip())
        if not match:
            return None
        initial, payments = int(match.group(1)), int(match.group(2))
        if payments < 1:
            return None
        return initial, payments

    def parse_mileage(self, text: str) -> int | None:
        """Parse a mileage band label such as ``10k``, ``10,000`` or ``8000``.

        A ``k`` token may carry trailing text (``"5k - Non Maint"``).
        """
        cleaned = _normalize(text.replace(",", ""))
        if not cleaned:
            return None
        match = _MILEAGE_THOUSANDS_RE.match(cleaned)
        if match:
            mileage = int(match.group(1)) * 1000
            return mileage or None
        match = _MILEAGE_FULL_RE.match(cleaned)
        if match:
            return int(match.group(1))
        return None

    # ------------------------------------------------------------------ #
    # Header cells
    # ------------------------------------------------------------------ #

    def match_header(self, text: str) -> HeaderMatch | None:
        """Match a header cell to a target field.

        An exact synonym wins outright (confidence 100). Otherwise the longest
        synonym contained in the cell wins (confidence 80). Failing that, a
        synonym containing the cell text matches (confidence 60); short cells
        are excluded from that direction because they are contained in
        almost anything.
        """
        label = _normalize(text)
        if not label:
            return None

        for target_field, synonyms in self.header_patterns:
            if label in synonyms:
                return HeaderMatch(target_field, 100, label)

        best: HeaderMatch | None = None
        for target_field, synonyms in self.header_patterns:
            for synonym in synonyms:
                if len(synonym) < 3 or synonym not in label:
                    continue
                if best is None or len(synonym) > len(best.pattern):
                    best = HeaderMatch(target_field, 80, synonym)
        if best is not None:
            return best

        if len(label) < 3:
            return None
        for target_field, synonyms in self.header_patterns:
            for synonym in synonyms:
                if label in synonym:
                    return HeaderMatch(target_field, 60, synonym)
        return None

    def header_pattern_dict(self) -> dict[str, list[str]]:
        """Header synonyms keyed by target field, for reference output."""
        return {name: list(synonyms) for name, synonyms in self.header_patterns}

    # ------------------------------------------------------------------ #
    # Contract types and maintenance
    # ------------------------------------------------------------------ #

    def match_contract_type(self, text: str) -> ContractType | None:
        """Recognise a whole-cell contract-type section marker."""
        token = _NON_ALNUM_RE.sub(" ", text.upper()).strip()
        if not token:
            return None
        for marker, contract_type in self.contract_type_tokens:
            if token == marker:
                return contract_type
        return None

    def maintenance_state(self, text: str) -> bool | None:
        """Classify a sub-header label.

        Returns:
            True for maintained, False for non-maintained, None otherwise.
        """
        label = _normalize(text)
        if not label:
            return None
        if label in self.exact_non_maintained_labels or any(
            token in label for token in self.non_maintained_tokens
        ):
            return False
        if label in self.exact_maintained_labels or any(
            token in label for token in self.maintained_tokens
        ):
            return True
        return None

    def is_maintenance_label(self, text: str) -> bool:
        return self.maintenance_state(text) is not None

    # ------------------------------------------------------------------ #
    # Vehicle identity
    # ------------------------------------------------------------------ #

    def match_manufacturer(self, name: str) -> tuple[str, str] | None:
        """Find a known manufacturer at the start of a name.

        Returns:
            (canonical manufacturer, remainder of the name), or None.
        """
        stripped = name.strip()
        upper = stripped.upper()
        for prefix, canonical in self._manufacturers_longest_first:
            if not upper.startswith(prefix):
                continue
            rest = stripped[len(prefix) :]
            if rest and rest[0].isalnum():
                continue
            return canonical, rest.strip(" -_:")
        return None

    def find_model(self, text: str) -> str | None:
        """Return the first known model name found in a variant string."""
        for model_name, pattern in self._model_patterns:
            if pattern.search(text):
                return model_name
        return None

    @cached_property
    def _manufacturers_longest_first(self) -> list[tuple[str, str]]:
        return sorted(self.manufacturers, key=lambda item: len(item[0]), reverse=True)

    @cached_property
    def _model_patterns(self) -> list[tuple[str, re.Pattern[str]]]:
        ordered = sorted(self.model_names, key=len, reverse=True)
        return [
            (
                name,
                re.compile(
                    rf"(?<![A-Za-z0-9]){re.escape(name)}(?![A-Za-z0-9])",
                    re.IGNORECASE,
                ),
            )
            for name in ordered
        ]

    # ------------------------------------------------------------------ #
    # CAP identifiers and quote numbers
    # ------------------------------------------------------------------ #

    @staticmethod
    def is_cap_code(text: str) -> bool:
        return bool(_CAP_CODE_RE.match(text.strip()))

    @staticmethod
    def is_cap_id(text: str) -> bool:
        return bool(_CAP_ID_RE.match(text.strip()))

    @staticmethod
    def find_cap_id(text: str) -> str | None:
        match = _EMBEDDED_CAP_ID_RE.search(text)
        return match.group(1) if match else None

    @staticmethod
    def find_quote_number(text: str) -> str | None:
        match = _QUOTE_NUMBER_RE.search(text)
        return match.group(0) if match else None


DEFAULT_PATTERNS = PatternLibrary()
