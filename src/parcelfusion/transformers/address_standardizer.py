"""
Address Parsing

Splits situs addresses into number / street / city and assembles addresses
that providers deliver as separate parts.
"""
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

# "123 Main St" or "123-125 Main Street, City"
_US_ADDRESS = re.compile(r"^(\d+[-\d]*)\s+(.+?)(?:,\s*(.+))?$")

# "Flat 1, 123 High Street" or "Unit 4, 12 Market Rd, Town"
_UK_ADDRESS = re.compile(
    r"^(?:(?:Flat|Unit)\s+\d+,\s+)?(\d+)\s+(.+?)(?:,\s*(.+))?$",
    re.IGNORECASE
)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class ParsedAddress:
    """
    Address components.

    Attributes:
        number: House/building number
        street: Street name and type
        city: Trailing city, when the address carries one
        full: Whole address, whitespace-collapsed
    """
    number: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    full: str = ""


def clean_address(address: Optional[str]) -> str:
    """Trim and collapse internal whitespace."""
    if not address:
        return ""
    return _WHITESPACE.sub(" ", str(address)).strip()


def parse_address(address: Optional[str]) -> ParsedAddress:
    """
    Parse a street address into components.

    Handles US, UK and Canadian layouts. Text that matches neither is kept
    whole as the street.

    Args:
        address: Raw address text

    Returns:
        ParsedAddress (empty when no address is given)
    """
    full = clean_address(address)
    if not full:
        return ParsedAddress()

    match = _US_ADDRESS.match(full) or _UK_ADDRESS.match(full)
    if match:
        return ParsedAddress(
            number=match.group(1),
            street=match.group(2),
            city=match.group(3) or None,
            full=full,
        )

    return ParsedAddress(street=full, full=full)


def join_address_parts(parts: Iterable[Any]) -> Optional[str]:
    """
    Join address parts (e.g. house number and street) with single spaces.

    Missing and blank parts are skipped; numeric parts such as 123.0 are
    written without the fraction.
    """
    pieces = []
    for part in parts:
        if part is None:
            continue
        if isinstance(part, float) and part.is_integer():
            part = int(part)
        text = clean_address(str(part))
        if text:
            pieces.append(text)
    return " ".join(pieces) or None
