"""Custom exceptions for configuration management."""

from typing import List, Optional

from pydantic import ValidationError


class ConfigurationError(Exception):
    """
    Exception raised when configuration validation fails.

    This exception can store multiple validation errors and format them
    in a human-readable way with helpful suggestions.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
    ):
        """
        Initialize ConfigurationError.

        Args:
            message: Primary error message
            errors: List of specific validation errors
            suggestions: List of helpful suggestions to fix the errors
        """
        self.message = message
        self.errors = errors or []
        self.suggestions = suggestions or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with all errors and suggestions."""
        parts = [self.message]

        if self.errors:
            parts.append("\nValidation Errors:")
            for i, error in enumerate(self.errors, 1):
                parts.append(f"  {i}. {error}")

        if self.suggestions:
            parts.append("\nSuggestions:")
            for suggestion in self.suggestions:
                parts.append(f"  - {suggestion}")

        return "\n".join(parts)

    @classmethod
    def from_validation_error(
        cls, exc: ValidationError, message: str = "Configuration validation failed"
    ) -> "ConfigurationError":
        """Translate a pydantic ValidationError into numbered, path-qualified errors."""
        errors = []
        for error in exc.errors():
            field_path = " -> ".join(str(loc) for loc in error["loc"]) or "<root>"
            error_type = error["type"]

            if error_type == "missing":
                errors.append(f"Missing required field: {field_path}")
            elif error_type.endswith("_type"):
                expected = error_type.replace("_type", "")
                errors.append(
                    f"Invalid type for '{field_path}': expected {expected}, got {error.get('input')!r}"
                )
            elif error_type.startswith(("greater_than", "less_than")):
                errors.append(f"Out of range value for '{field_path}': {error['msg']}")
            else:
                errors.append(f"{field_path}: {error['msg']}")

        return cls(
            message,
            errors=errors,
            suggestions=[
                "Review config.example.yaml for correct format",
                "Check that thresholds satisfy low < high and lie within 0-100",
                "Verify field types match the expected schema",
            ],
        )
