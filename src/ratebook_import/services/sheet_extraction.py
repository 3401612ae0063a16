"""Result type shared by the tabular and matrix extractors."""

from dataclasses import dataclass, field

from ratebook_import.models import ParsedRate


@dataclass
class SheetExtraction:
    """Rates and diagnostics produced from one sheet."""

    sheet_name: str
    """Name of the sheet the rates came from."""

    rates: list[ParsedRate] = field(default_factory=list)
    """Rates in row-major source order."""

    warnings: list[str] = field(default_factory=list)
    """Non-fatal oddities worth showing to an operator."""

    errors: list[str] = field(default_factory=list)
    """Rows or cells that could not be turned into a rate."""

    skipped: int = 0
    """Rows or cells skipped silently (blank, zero or missing identity)."""

    @property
    def rate_count(self) -> int:
        return len(self.rates)
