"""Who is issuing an intent."""

from enum import Enum

from pydantic import BaseModel


class Role(str, Enum):
    """Session roles."""
    FACILITATOR = "facilitator"     # Drives global-order transitions
    PARTICIPANT = "participant"


class Actor(BaseModel):
    """The client behind an intent. ``id`` is the crawler id for participants."""
    id: str | None = None
    role: Role = Role.PARTICIPANT

    @property
    def is_facilitator(self) -> bool:
        return self.role == Role.FACILITATOR

    def may_act_for(self, combatant_id: str) -> bool:
        """Facilitators act for anyone; participants only for themselves."""
        return self.is_facilitator or self.id == combatant_id


FACILITATOR = Actor(role=Role.FACILITATOR)
