"""
Barcode validation utilities for the Inventory service.

Covers the symbologies handled by the scanners in the field: format rules,
check digit verification, format detection and barcode suggestions for new
part numbers.
"""
import re
from typing import Dict, Optional, Tuple

AUTO = "AUTO"

# Format rules.
# Each entry: (min_length, max_length, pattern or None, has_check_digit)
BARCODE_FORMATS: Dict[str, Tuple[int, int, Optional[str], bool]] = {
    "CODE_128": (1, 128, r"^[A-Za-z0-9\-\.\s/]+$", False),
    "QR_CODE": (1, 2048, None, False),
    "CODE_39": (1, 43, r"^[A-Z0-9\-\.\s/]+$", False),
    "EAN_13": (13, 13, r"^\d{13}$", True),
    "EAN_8": (8, 8, r"^\d{8}$", True),
    "UPC_A": (12, 12, r"^\d{12}$", True),
    "UPC_E": (6, 8, r"^\d{6,8}$", False),
}

# Most specific symbologies first so numeric retail codes are not reported as CODE_128
DETECTION_ORDER = ("EAN_13", "UPC_A", "EAN_8", "UPC_E", "CODE_39", "CODE_128", "QR_CODE")

MIN_SCAN_CONFIDENCE = 50
MIN_SCAN_LENGTH = 3
MAX_SCAN_LENGTH = 2048


def _weighted_check_digit(digits: str, first_weight: int, second_weight: int) -> int:
    total = 0
    for index, char in enumerate(digits):
        weight = first_weight if index % 2 == 0 else second_weight
        total += int(char) * weight
    return (10 - total % 10) % 10


def ean13_check_digit(first_twelve: str) -> int:
    """Check digit for the first 12 digits of an EAN-13 code (weights 1,3,1,3...)."""
    return _weighted_check_digit(first_twelve, 1, 3)


def ean8_check_digit(first_seven: str) -> int:
    """Check digit for the first 7 digits of an EAN-8 code (weights 3,1,3,1...)."""
    return _weighted_check_digit(first_seven, 3, 1)


def upca_check_digit(first_eleven: str) -> int:
    """Check digit for the first 11 digits of a UPC-A code (weights 3,1,3,1...)."""
    return _weighted_check_digit(first_eleven, 3, 1)


CHECK_DIGITS = {
    "EAN_13": ean13_check_digit,
    "EAN_8": ean8_check_digit,
    "UPC_A": upca_check_digit,
}


def validate_format(barcode: str, barcode_format: str) -> Tuple[bool, str]:
    """
    Validate a barcode against one specific format.

    Args:
        barcode: Raw barcode text
        barcode_format: One of BARCODE_FORMATS

    Returns:
        Tuple of (is_valid, error_message)
    """
    rules = BARCODE_FORMATS.get(barcode_format)
    if rules is None:
        return False, f"Unsupported barcode format: {barcode_format}"

    min_length, max_length, pattern, has_check_digit = rules
    if len(barcode) < min_length or len(barcode) > max_length:
        if min_length == max_length:
            return False, f"{barcode_format} barcode must be exactly {min_length} characters"
        return False, f"{barcode_format} barcode must be between {min_length} and {max_length} characters"

    if pattern and not re.match(pattern, barcode):
        return False, f"Barcode contains characters not allowed in {barcode_format}"

    if has_check_digit:
        expected = CHECK_DIGITS[barcode_format](barcode[:-1])
        if int(barcode[-1]) != expected:
            return False, f"Invalid {barcode_format} check digit"

    return True, ""


def validate_barcode(barcode: Optional[str], barcode_format: str = AUTO) -> Tuple[bool, Optional[str], str]:
    """
    Validate a barcode, detecting the format when none is given.

    Args:
        barcode: Raw barcode text
        barcode_format: Format name or "AUTO"

    Returns:
        Tuple of (is_valid, detected_or_requested_format, error_message)
    """
    if not barcode or not barcode.strip():
        return False, None, "Barcode cannot be empty"

    barcode_format = (barcode_format or AUTO).upper()
    if barcode_format != AUTO:
        is_valid, error = validate_format(barcode, barcode_format)
        return is_valid, barcode_format if barcode_format in BARCODE_FORMATS else None, error

    detected = detect_format(barcode)
    if detected is None:
        return False, None, "Barcode does not match any supported format"
    return True, detected, ""


def detect_format(barcode: str) -> Optional[str]:
    """
    Return the first format the barcode is valid for, or None.

    Args:
        barcode: Raw barcode text
    """
    for barcode_format in DETECTION_ORDER:
        is_valid, _ = validate_format(barcode, barcode_format)
        if is_valid:
            return barcode_format
    return None


def suggest_barcode(part_number: str, barcode_format: str = "CODE_128") -> str:
    """
    Suggest a barcode value for a part number.

    Args:
        part_number: Item part number
        barcode_format: Target format ("CODE_128", "CODE_39" or "EAN_13")

    Returns:
        Suggested barcode string

    Raises:
        ValueError: If the format is unsupported or nothing usable remains of the part number
    """
    cleaned = re.sub(r"[^A-Z0-9]", "", part_number.upper())
    if not cleaned:
        raise ValueError("Part number has no characters usable in a barcode")

    barcode_format = barcode_format.upper()
    if barcode_format in ("CODE_128", "CODE_39"):
        return cleaned[:BARCODE_FORMATS[barcode_format][1]]

    if barcode_format == "EAN_13":
        # Letters become digits so every part number yields a numeric code
        digits = "".join(char if char.isdigit() else str(ord(char) % 10) for char in cleaned)
        digits = digits[:12].ljust(12, "0")
        return digits + str(ean13_check_digit(digits))

    raise ValueError(f"Unsupported barcode format: {barcode_format}")


def validate_scan_quality(barcode: Optional[str], confidence: Optional[int] = None) -> Tuple[bool, str]:
    """
    Reject scans that are likely misreads.

    Args:
        barcode: Decoded barcode text
        confidence: Scanner confidence 0-100 (optional)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if confidence is not None and confidence < MIN_SCAN_CONFIDENCE:
        return False, "Low confidence scan - please try again"
    if not barcode or len(barcode) < MIN_SCAN_LENGTH:
        return False, "Barcode too short"
    if len(barcode) > MAX_SCAN_LENGTH:
        return False, "Barcode too long"
    return True, ""
