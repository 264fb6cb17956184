"""
Dossier Workflow Platform
Agent domain model — back-office operators who work dossier steps.

Two agent types partition the step space:
    VERIFICATEUR  → reviews CLIENT steps (client-supplied forms and documents)
    CREATEUR      → performs ADMIN steps (filings, deliverables)

The partition is a closed table keyed by AgentType. Adding a third agent type
means adding a row here; every caller goes through can_complete_step_type().
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from app.models import db
from app.models.catalog import StepType


class AgentType(str, Enum):
    VERIFICATEUR = "VERIFICATEUR"
    CREATEUR = "CREATEUR"


AGENT_TYPES = {t.value for t in AgentType}

# agent type → the only step type it may complete
AGENT_STEP_CAPABILITIES = {
    AgentType.VERIFICATEUR: StepType.CLIENT,
    AgentType.CREATEUR: StepType.ADMIN,
}

# step type → agent type allowed to be assigned to it
STEP_TYPE_AGENT = {step_type: agent_type for agent_type, step_type in AGENT_STEP_CAPABILITIES.items()}


def can_complete_step_type(agent_type, step_type) -> bool:
    """Return True if agent_type may complete a step of step_type."""
    try:
        allowed = AGENT_STEP_CAPABILITIES[AgentType(agent_type)]
    except ValueError:
        return False
    return allowed.value == (step_type.value if isinstance(step_type, StepType) else step_type)


def agent_type_for_step_type(step_type) -> AgentType | None:
    try:
        return STEP_TYPE_AGENT[StepType(step_type)]
    except ValueError:
        return None


class Agent(db.Model):
    """Back-office agent. Resolved from the authenticated actor's email."""

    __tablename__ = "agents"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=True)
    agent_type = db.Column(
        db.String(20), nullable=False, default=AgentType.VERIFICATEUR.value,
        comment="VERIFICATEUR | CREATEUR",
    )
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def type(self) -> AgentType:
        return AgentType(self.agent_type)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "agent_type": self.agent_type,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Agent {self.email} [{self.agent_type}]>"
