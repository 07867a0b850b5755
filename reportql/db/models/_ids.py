"""Primary key helpers shared by the demo models."""

from uuid import uuid4


def new_uuid() -> str:
    return str(uuid4())
