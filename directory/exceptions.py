from typing import Optional


class ConfigurationError(Exception):
    """Required configuration is missing; raised before any I/O."""

    def __init__(self, variable: str):
        super().__init__(f"Missing {variable} in environment or .env file")
        self.variable = variable


class CsvParseError(Exception):
    """The extract has no usable header or a row that cannot be parsed."""

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(f"line {line}: {message}" if line else message)
        self.line = line


class StoreError(Exception):
    """A store round-trip failed.

    ``is_duplicate`` marks uniqueness violations, which the importer
    treats as "already there" rather than as a failure.
    """

    DUPLICATE_CODE = '23505'

    def __init__(self, message: str, *, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @property
    def is_duplicate(self) -> bool:
        if self.code == self.DUPLICATE_CODE:
            return True
        msg = (self.message or '').lower()
        return 'duplicate' in msg or 'unique' in msg
