"""Document status state machine.

UPLOADING -> PROCESSING -> {READY, FAILED}

The transition function is pure so it can be tested without storage. Repeating
an event that already produced the current state is a no-op; anything that
would move a document out of a terminal state is rejected.
"""

from enum import Enum

from knowitall.documents.models import DocumentStatus


class IngestionEvent(str, Enum):
    """Events emitted by the ingestion pipeline."""
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({DocumentStatus.READY, DocumentStatus.FAILED})

_TRANSITIONS = {
    (DocumentStatus.UPLOADING, IngestionEvent.STARTED): DocumentStatus.PROCESSING,
    (DocumentStatus.UPLOADING, IngestionEvent.FAILED): DocumentStatus.FAILED,
    (DocumentStatus.PROCESSING, IngestionEvent.STARTED): DocumentStatus.PROCESSING,
    (DocumentStatus.PROCESSING, IngestionEvent.SUCCEEDED): DocumentStatus.READY,
    (DocumentStatus.PROCESSING, IngestionEvent.FAILED): DocumentStatus.FAILED,
    (DocumentStatus.READY, IngestionEvent.SUCCEEDED): DocumentStatus.READY,
    (DocumentStatus.FAILED, IngestionEvent.FAILED): DocumentStatus.FAILED,
}


class InvalidTransitionError(ValueError):
    """Raised when an event is not allowed in the current status."""

    def __init__(self, current: DocumentStatus, event: IngestionEvent):
        super().__init__(f"Cannot apply '{event.value}' to a document in status {current.value}")
        self.current = current
        self.event = event


def transition(current: DocumentStatus, event: IngestionEvent) -> DocumentStatus:
    """
    Compute the status that follows ``event``.

    Args:
        current: Status the document is in now
        event: Pipeline event to apply

    Returns:
        The new status

    Raises:
        InvalidTransitionError: if the event is not allowed from ``current``
    """
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(current, event) from None


def is_terminal(status: DocumentStatus) -> bool:
    return status in TERMINAL_STATUSES


def status_message(status: DocumentStatus) -> str:
    """User-facing description of a status."""
    return {
        DocumentStatus.UPLOADING: "Document is being uploaded...",
        DocumentStatus.PROCESSING: "Processing document (chunking, embedding)...",
        DocumentStatus.READY: "Document is ready for queries",
        DocumentStatus.FAILED: "Document processing failed",
    }[status]
