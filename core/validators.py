"""
Custom validators for donation addresses and user profiles.
"""

import re
from django.core.exceptions import ValidationError
from django.core.validators import RegexValidator


PROFILE_IMAGE_MAX_BYTES = 5 * 1024 * 1024

PROFILE_IMAGE_TYPES = {
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'webp': 'image/webp',
}


# Brazilian CEP: 12345-678 or 12345678
validate_postal_code = RegexValidator(
    regex=r'^\d{5}-?\d{3}$',
    message='Postal code must have the format 12345-678 or 12345678.',
    code='invalid_postal_code'
)


def validate_state_code(value):
    """
    Validate a two-letter state abbreviation.

    Lower-case input is rejected so that stored values stay canonical; the
    services and serializers upper-case user input before it gets here.
    """
    if value and not re.match(r'^[A-Z]{2}$', value):
        raise ValidationError(
            'State must be exactly 2 letters (e.g. SP).',
            code='invalid_state'
        )


def validate_phone_number(value):
    """
    Validate a contact phone number.

    Formatting characters (spaces, dashes, parentheses, a leading plus) are
    allowed. What remains must be an area code plus a landline or mobile
    number, optionally prefixed with the country code 55:

    - (11) 3456-7890
    - +55 11 98765-4321
    - 11987654321

    Raises:
        ValidationError: If the number cannot be a valid phone number
    """
    if not value:
        return

    if not re.match(r'^\+?[\d\s\-\(\)]+$', value):
        raise ValidationError(
            'Phone number can only contain digits, spaces, dashes, parentheses and a leading plus sign.',
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)
    if len(digits) in (12, 13) and digits.startswith('55'):
        digits = digits[2:]

    if len(digits) not in (10, 11):
        raise ValidationError(
            'Phone number must have an area code followed by 8 or 9 digits.',
            code='invalid_phone_length'
        )

    if len(set(digits)) == 1:
        raise ValidationError(
            'Phone number cannot be all the same digit.',
            code='invalid_phone_pattern'
        )


def validate_profile_image(image):
    """
    Check size, extension and (when the upload reports one) content type of
    a profile picture. Pillow verifies the image data itself at upload time.
    """
    if not image:
        return

    if image.size > PROFILE_IMAGE_MAX_BYTES:
        raise ValidationError(
            f'Image file size cannot exceed 5MB. Current size: {image.size / (1024 * 1024):.2f}MB',
            code='image_too_large'
        )

    extension = image.name.rsplit('.', 1)[-1].lower() if '.' in image.name else ''
    if extension not in PROFILE_IMAGE_TYPES:
        raise ValidationError(
            f'Invalid image format. Allowed formats: {", ".join(PROFILE_IMAGE_TYPES)}',
            code='invalid_image_format'
        )

    content_type = getattr(image, 'content_type', None)
    if content_type and content_type not in set(PROFILE_IMAGE_TYPES.values()):
        raise ValidationError(
            f'Invalid image content type: {content_type}',
            code='invalid_content_type'
        )
