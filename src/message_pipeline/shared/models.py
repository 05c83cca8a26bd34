"""Record model for persisted messages."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import RecordValidationError, Result


MAX_CONTENT_LENGTH = 1000


@dataclass(frozen=True)
class Record:
    """One successfully dequeued message.

    ``id`` stays ``None`` until the store assigns it on insert.
    ``processed_at`` is stamped by the consumer, never by the store.
    """
    content: str
    processed_at: datetime
    id: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: str, policy: str = "reject",
                     now: Optional[datetime] = None) -> "Record":
        """Build a record from a raw queue payload.

        Raises:
            RecordValidationError: empty payload, payload holding a NUL (which
                PostgreSQL text cannot store), or over-long payload under
                the ``reject`` policy
        """
        if not payload:
            raise RecordValidationError("Payload is empty")

        if "\x00" in payload:
            raise RecordValidationError("Payload contains a NUL character")

        if len(payload) > MAX_CONTENT_LENGTH:
            if policy == "truncate":
                payload = payload[:MAX_CONTENT_LENGTH]
            else:
                raise RecordValidationError(
                    f"Payload is {len(payload)} characters, limit is {MAX_CONTENT_LENGTH}"
                )

        return cls(content=payload, processed_at=now or datetime.now(timezone.utc))

    @classmethod
    def parse(cls, payload: str, policy: str = "reject",
              now: Optional[datetime] = None) -> Result["Record"]:
        """Like :meth:`from_payload`, but report validation failures as a value."""
        try:
            return Result.success(cls.from_payload(payload, policy, now))
        except RecordValidationError as e:
            return Result.failure(e)

    def to_dict(self):
        return {
            "id": self.id,
            "content": self.content,
            "processed_at": self.processed_at.isoformat(),
        }
