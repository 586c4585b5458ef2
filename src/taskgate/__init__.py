"""TaskGate - role-scoped task assignment with an append-only audit trail."""

__version__ = "0.1.0"
