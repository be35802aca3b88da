"""Exception types raised by Red Alert."""


class RedAlertError(Exception):
    """Base class for all Red Alert errors."""


class CategoryNotFoundError(RedAlertError, LookupError):
    def __init__(self, category_id: int) -> None:
        super().__init__(f"Category not found with id: {category_id}")
        self.category_id = category_id


class DuplicateCategoryError(RedAlertError, ValueError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Category with name '{name}' already exists")
        self.name = name


class ProcessedEmailNotFoundError(RedAlertError, LookupError):
    def __init__(self, record_id: int) -> None:
        super().__init__(f"Processed email not found with id: {record_id}")
        self.record_id = record_id


class MailboxIntegrationError(RedAlertError):
    """The mailbox provider failed or returned something unusable."""


class CalendarIntegrationError(RedAlertError):
    """The calendar provider failed or returned something unusable."""


class CircuitOpenError(RedAlertError):
    """A call was refused because its circuit breaker is open."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit breaker '{name}' is open")
        self.name = name
