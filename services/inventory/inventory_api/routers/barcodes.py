"""
Barcode endpoints.

Mounted at /api/v1/barcodes.
"""
from fastapi import APIRouter, Depends, Query

from .. import auth, barcodes, schemas
from ..exceptions import ValidationError

router = APIRouter(prefix="/api/v1/barcodes", tags=["barcodes"])

ITEMS_READ = auth.permission_name("items", "read")


@router.post("/validate", response_model=schemas.BarcodeValidationResult)
def validate_barcode(
    request: schemas.BarcodeValidationRequest,
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """
    Validate a barcode against one format, or detect its format.

    When a scanner confidence is supplied the scan quality is checked first.

    Args:
        request: Barcode, format ("AUTO" to detect) and optional confidence
        current_user: Current authenticated user (injected)

    Returns:
        Validation result with the detected or requested format
    """
    if request.confidence is not None:
        is_valid, error = barcodes.validate_scan_quality(request.barcode, request.confidence)
        if not is_valid:
            return schemas.BarcodeValidationResult(is_valid=False, error=error)

    is_valid, barcode_format, error = barcodes.validate_barcode(request.barcode, request.format)
    return schemas.BarcodeValidationResult(is_valid=is_valid, format=barcode_format, error=error or None)


@router.get("/suggest", response_model=schemas.BarcodeSuggestion)
def suggest_barcode(
    part_number: str = Query(..., min_length=1, max_length=50),
    format: str = Query("CODE_128"),
    current_user: auth.CurrentUser = Depends(auth.require_permission(ITEMS_READ)),
):
    """
    Suggest a barcode for a part number.

    Raises:
        ValidationError: 400 if the format is unsupported or the part number has no usable characters
    """
    try:
        barcode = barcodes.suggest_barcode(part_number, format)
    except ValueError as e:
        raise ValidationError.single("format" if "format" in str(e) else "part_number", str(e))
    return schemas.BarcodeSuggestion(part_number=part_number, format=format.upper(), barcode=barcode)
