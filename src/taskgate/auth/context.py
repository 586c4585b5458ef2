"""Request context helpers."""

from dataclasses import dataclass
from typing import Optional

# Column widths of audit_entries.ip_address / user_agent
MAX_IP_LENGTH = 64
MAX_USER_AGENT_LENGTH = 512


@dataclass(frozen=True)
class RequestContext:
    """Where the current operation came from, stamped onto audit entries."""

    ip_address: str = "unknown"
    user_agent: Optional[str] = None

    def __post_init__(self):
        # Client-supplied values are cut to fit, never rejected
        object.__setattr__(self, "ip_address", (self.ip_address or "unknown")[:MAX_IP_LENGTH])
        if self.user_agent is not None:
            object.__setattr__(self, "user_agent", self.user_agent[:MAX_USER_AGENT_LENGTH])
