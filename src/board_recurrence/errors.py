class RecurrenceError(Exception):
    """
    Base class for all recurrence engine errors.
    """


class RuleValidationError(RecurrenceError, ValueError):
    """
    Raised when a recurrence rule is built from fields that break its invariants.

    This is the editing-path failure. Reading a malformed rule back from storage
    never raises; the codec returns None instead.
    """


class TemplateNotFoundError(RecurrenceError, LookupError):
    def __init__(self, template_id: str):
        super().__init__(f"Template task '{template_id}' not found")
        self.template_id = template_id


class RecursionNotAllowedError(RecurrenceError, ValueError):
    """
    Raised when recurrence is enabled on a generated instance.
    """
