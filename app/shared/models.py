from pydantic import BaseModel, Field
from datetime import datetime


class TimestampMixin(BaseModel):
    """Mixin for adding timestamp fields to documents."""

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def update_timestamp(self):
        """Update the updated_at timestamp."""
        self.updated_at = datetime.utcnow()


def document_to_dict(document) -> dict:
    """Dump a Beanie document into plain fields with a string ``id``."""
    data = document.model_dump(exclude={"id", "revision_id"})
    data["id"] = str(document.id) if document.id else None
    return data
