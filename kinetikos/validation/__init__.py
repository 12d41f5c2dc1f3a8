"""
Kinetikos Validation Module

Validates input data before the compute stages.

Exports:
    - validate_observations: Validate an observations frame
    - ValidationError: Raised when input validation fails
    - InputValidationReport: Validation result with errors and warnings
"""

from .input_validation import (
    validate_observations,
    ValidationError,
    InputValidationReport,
)

__all__ = [
    'validate_observations',
    'ValidationError',
    'InputValidationReport',
]
