"""
Input validation for LegacyVault payloads.

Validation Rules Documentation:
===============================

1. ASSETS
   - name: required, max 200 chars, no HTML
   - category: required enum (property, investment, bank_account, vehicle,
     jewelry, digital_asset, insurance, business, other)
   - estimated_value: optional, number >= 0, max 999,999,999,999
   - currency: optional, 3-letter code
   - description: optional, max 2000 chars
   - documents_url: optional, must end in an allowed document extension

2. RECIPIENTS
   - full_name: required, max 100 chars
   - email: optional, valid format, max 255 chars
   - phone: optional, max 20 chars, digits/spaces/+-() only
   - relationship: optional free text, max 50 chars

3. WILL CONTENT
   - type: required enum (audio, video, chat, text)
   - content / transcript: optional, max 50,000 chars, stored verbatim
   - notes: optional, max 2,000 chars, stored verbatim
   - title: optional, max 200 chars

4. ALLOCATION PERCENTAGES
   - Parsed to a two-decimal fixed-point value before any comparison
   - Must be greater than 0 and at most 100
   - Set-level rules (uniqueness, sum to exactly 100) live in allocations.py

PATCH-style updates validate only the fields present in the payload.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field

from legacyvault.models import AssetCategory, WillType


@dataclass
class ValidationError:
    """Represents a single validation error with precise field path."""
    field: str
    message: str
    code: str
    section: str = ''  # For grouping errors by section


@dataclass
class ValidationResult:
    """Container for validation results."""
    errors: List[ValidationError] = field(default_factory=list)
    is_valid: bool = True
    warnings: List[ValidationError] = field(default_factory=list)  # Non-blocking issues

    def add_error(self, field: str, message: str, code: str = 'invalid', section: str = ''):
        """Add a validation error."""
        self.errors.append(ValidationError(field, message, code, section))
        self.is_valid = False

    def add_warning(self, field: str, message: str, code: str = 'warning', section: str = ''):
        """Add a non-blocking warning."""
        self.warnings.append(ValidationError(field, message, code, section))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            'ok': self.is_valid,
            'errors': [
                {'field': e.field, 'message': e.message, 'code': e.code, 'section': e.section}
                for e in self.errors
            ],
            'warnings': [
                {'field': w.field, 'message': w.message, 'code': w.code, 'section': w.section}
                for w in self.warnings
            ]
        }


# Constants for validation
MAX_ASSET_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000
MAX_ASSET_VALUE = Decimal('999999999999')
MAX_RECIPIENT_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 255
MAX_PHONE_LENGTH = 20
MAX_RELATIONSHIP_LENGTH = 50
MAX_ADDRESS_LENGTH = 500
MAX_LOCATION_LENGTH = 200
MAX_TITLE_LENGTH = 200
MAX_WILL_CONTENT_LENGTH = 50000
MAX_NOTES_LENGTH = 2000
MAX_URL_LENGTH = 500
MAX_PERCENTAGE = Decimal('100')
MIN_PERCENTAGE = Decimal('0')  # exclusive
PERCENTAGE_QUANTUM = Decimal('0.01')

# Regex patterns
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
PHONE_PATTERN = re.compile(r'^\+?[\d\s\-()]{0,20}$')
CURRENCY_PATTERN = re.compile(r'^[A-Z]{3}$')
HTML_TAG_PATTERN = re.compile(r'<[^>]+>')

# Enums - strictly enforced
ASSET_CATEGORIES = [c.value for c in AssetCategory]
WILL_TYPES = [t.value for t in WillType]
ALLOWED_DOC_EXTENSIONS = ['.pdf', '.jpg', '.jpeg', '.png', '.doc', '.docx']

# Owner-written text, stored exactly as given
WILL_FREE_TEXT_FIELDS = ('content', 'transcript', 'notes')


def coerce_to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce numbers and numeric strings to a finite Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal, str)):
        try:
            num = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
        if not num.is_finite():
            return None
        return num
    return None


def parse_percentage(value: Any) -> Optional[Decimal]:
    """
    Parse a percentage to two-decimal fixed point.

    Returns None when the value is not a finite number or is too large to
    hold two decimal places. Range checking is left to the caller.
    """
    num = coerce_to_decimal(value)
    if num is None:
        return None
    try:
        return num.quantize(PERCENTAGE_QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def is_valid_percentage(value: Optional[Decimal]) -> bool:
    """A parsed percentage must be greater than 0 and at most 100."""
    return value is not None and MIN_PERCENTAGE < value <= MAX_PERCENTAGE


def validate_string(value: Any, field_name: str, result: ValidationResult,
                    required: bool = True, max_length: int = MAX_RECIPIENT_NAME_LENGTH,
                    allow_html: bool = False, section: str = '') -> bool:
    """Validate a string field."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    str_value = str(value).strip()

    if len(str_value) > max_length:
        result.add_error(field_name, f'Maximum {max_length} characters allowed', 'max_length', section)
        return False

    if not allow_html and HTML_TAG_PATTERN.search(str_value):
        result.add_error(field_name, 'HTML tags are not allowed', 'invalid_chars', section)
        return False

    return True


def validate_email(value: Any, field_name: str, result: ValidationResult,
                   required: bool = True, section: str = '') -> bool:
    """Validate an email address."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    str_value = str(value).strip()

    if len(str_value) > MAX_EMAIL_LENGTH:
        result.add_error(field_name, 'Email address is too long', 'max_length', section)
        return False

    if not EMAIL_PATTERN.match(str_value):
        result.add_error(field_name, 'Please enter a valid email address', 'format', section)
        return False

    return True


def validate_phone(value: Any, field_name: str, result: ValidationResult,
                   required: bool = True, section: str = '') -> bool:
    """Validate a phone number."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    str_value = str(value).strip()

    if len(str_value) > MAX_PHONE_LENGTH:
        result.add_error(field_name, 'Phone number is too long', 'max_length', section)
        return False

    if not PHONE_PATTERN.match(str_value):
        result.add_error(field_name, 'Please enter a valid phone number', 'format', section)
        return False

    return True


def validate_enum(value: Any, field_name: str, allowed: List[str],
                  result: ValidationResult, required: bool = True, section: str = '') -> bool:
    """Validate an enum field with strict matching."""
    if value is None or str(value).strip() == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    str_value = str(value).strip()

    if str_value not in allowed:
        result.add_error(field_name, f'Must be one of: {", ".join(allowed)}', 'enum', section)
        return False

    return True


def validate_positive_number(value: Any, field_name: str, result: ValidationResult,
                             required: bool = True, max_value: Optional[Decimal] = None,
                             section: str = '') -> bool:
    """Validate a non-negative number."""
    if value is None or value == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    num = coerce_to_decimal(value)
    if num is None:
        result.add_error(field_name, 'Must be a valid number', 'type', section)
        return False
    if num < 0:
        result.add_error(field_name, 'Value cannot be negative', 'min_value', section)
        return False
    if max_value is not None and num > max_value:
        result.add_error(field_name, 'Value is too large', 'max_value', section)
        return False
    return True


def validate_percentage(value: Any, field_name: str, result: ValidationResult,
                        required: bool = True, section: str = '') -> bool:
    """Validate a percentage value in (0, 100]."""
    if value is None or value == '':
        if required:
            result.add_error(field_name, 'This field is required', 'required', section)
        return False

    parsed = parse_percentage(value)
    if parsed is None:
        result.add_error(field_name, 'Must be a valid percentage', 'type', section)
        return False
    if not is_valid_percentage(parsed):
        result.add_error(field_name, 'Percentage must be greater than 0 and at most 100', 'range', section)
        return False
    return True


def validate_document_reference(value: Any, field_name: str, result: ValidationResult,
                                section: str = '') -> bool:
    """Validate a stored document reference by its file extension."""
    if value is None or str(value).strip() == '':
        return False

    str_value = str(value).strip()
    if len(str_value) > MAX_URL_LENGTH:
        result.add_error(field_name, f'Maximum {MAX_URL_LENGTH} characters allowed', 'max_length', section)
        return False

    path = str_value.split('?', 1)[0].lower()
    if not any(path.endswith(ext) for ext in ALLOWED_DOC_EXTENSIONS):
        result.add_error(
            field_name,
            'Invalid file extension. Allowed: PDF, JPG, PNG, DOC, DOCX',
            'file_type',
            section
        )
        return False
    return True


def validate_asset_payload(payload: Dict[str, Any], partial: bool = False) -> ValidationResult:
    """
    Validate an asset create or update payload.

    Args:
        payload: Asset fields from the request body
        partial: Only validate fields present in the payload (updates)

    Returns:
        ValidationResult with errors if any
    """
    result = ValidationResult()
    section = 'asset'

    if not isinstance(payload, dict):
        result.add_error('', 'Payload must be a JSON object', 'type', section)
        return result

    if not partial or 'name' in payload:
        validate_string(payload.get('name'), 'name', result,
                        max_length=MAX_ASSET_NAME_LENGTH, section=section)

    if not partial or 'category' in payload:
        validate_enum(payload.get('category', AssetCategory.OTHER.value), 'category',
                      ASSET_CATEGORIES, result, section=section)

    validate_positive_number(payload.get('estimated_value'), 'estimated_value', result,
                             required=False, max_value=MAX_ASSET_VALUE, section=section)

    currency = payload.get('currency')
    if currency not in (None, '') and not CURRENCY_PATTERN.match(str(currency).strip()):
        result.add_error('currency', 'Currency must be a 3-letter code', 'format', section)

    validate_string(payload.get('description'), 'description', result,
                    required=False, max_length=MAX_DESCRIPTION_LENGTH, section=section)
    validate_string(payload.get('location'), 'location', result,
                    required=False, max_length=MAX_LOCATION_LENGTH, section=section)
    validate_document_reference(payload.get('documents_url'), 'documents_url', result, section=section)

    return result


def validate_recipient_payload(payload: Dict[str, Any], partial: bool = False) -> ValidationResult:
    """Validate a recipient create or update payload."""
    result = ValidationResult()
    section = 'recipient'

    if not isinstance(payload, dict):
        result.add_error('', 'Payload must be a JSON object', 'type', section)
        return result

    if not partial or 'full_name' in payload:
        validate_string(payload.get('full_name'), 'full_name', result,
                        max_length=MAX_RECIPIENT_NAME_LENGTH, section=section)

    validate_email(payload.get('email'), 'email', result, required=False, section=section)
    validate_phone(payload.get('phone'), 'phone', result, required=False, section=section)
    validate_string(payload.get('relationship'), 'relationship', result,
                    required=False, max_length=MAX_RELATIONSHIP_LENGTH, section=section)
    validate_string(payload.get('address'), 'address', result,
                    required=False, max_length=MAX_ADDRESS_LENGTH, section=section)

    return result


def validate_will_content(will_type: Any, payload: Dict[str, Any]) -> ValidationResult:
    """Validate a will content save."""
    result = ValidationResult()
    section = 'will'

    validate_enum(will_type, 'type', WILL_TYPES, result, section=section)

    if not isinstance(payload, dict):
        result.add_error('', 'Payload must be a JSON object', 'type', section)
        return result

    validate_string(payload.get('title'), 'title', result,
                    required=False, max_length=MAX_TITLE_LENGTH, section=section)

    for key in WILL_FREE_TEXT_FIELDS:
        max_length = MAX_NOTES_LENGTH if key == 'notes' else MAX_WILL_CONTENT_LENGTH
        validate_string(payload.get(key), key, result, required=False,
                        max_length=max_length, allow_html=True, section=section)

    for key in ('audio_url', 'video_url'):
        validate_string(payload.get(key), key, result, required=False,
                        max_length=MAX_URL_LENGTH, section=section)

    return result
