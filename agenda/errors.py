from __future__ import annotations


class AgendaError(Exception):
    """Base class for agenda queue and store failures."""


class StaleReferenceError(AgendaError):
    """An operation targeted an item that is no longer in the local list."""

    def __init__(self, entity_type: str, entity_id: int):
        super().__init__(f"{entity_type} {entity_id} is not in the current queue")
        self.entity_type = entity_type
        self.entity_id = entity_id


class PersistenceError(AgendaError):
    """A store write failed. The local optimistic state is left as-is."""

    def __init__(self, message: str, *, operation: str, entity_type: str | None = None,
                 entity_id: int | None = None):
        super().__init__(message)
        self.operation = operation
        self.entity_type = entity_type
        self.entity_id = entity_id
