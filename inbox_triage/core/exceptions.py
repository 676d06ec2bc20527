"""
Error taxonomy for the triage pipeline.
"""


class TriageError(Exception):
    """Base class for all pipeline errors."""


class ClassifierError(TriageError):
    """The classifier call failed: malformed response, timeout or transport error."""


class NotifierError(TriageError):
    """The outbound notification could not be delivered."""


class DuplicateOutcome(TriageError):
    """A terminal outcome was written twice for the same item id."""

    def __init__(self, item_id: str, existing_status: str):
        self.item_id = item_id
        self.existing_status = existing_status
        super().__init__(f"Item {item_id} already has terminal outcome '{existing_status}'")


class PersistenceError(TriageError):
    """Writing the state file failed. The previous file is left untouched."""
