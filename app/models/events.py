from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    # Deep research progress
    SOURCE_DELTA = "source-delta"
    ACTIVITY_DELTA = "activity-delta"
    DEPTH_DELTA = "depth-delta"
    FINISH = "finish"
    # Surrounding chat stream
    USER_MESSAGE_ID = "user-message-id"
    TEXT_DELTA = "text-delta"
    TOOL_CALL = "tool-call"
    TOOL_RESULT = "tool-result"
    MESSAGE_ANNOTATION = "message-annotation"
    ERROR = "error"


class ActivityKind(str, Enum):
    SEARCH = "search"
    EXTRACT = "extract"
    ANALYZE = "analyze"
    REASONING = "reasoning"
    SYNTHESIS = "synthesis"
    THOUGHT = "thought"


class ActivityStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: Any = field(default_factory=dict)

    def to_message(self) -> dict[str, str]:
        """Shape accepted by sse_starlette's EventSourceResponse."""
        return {"event": self.event.value, "data": json.dumps(self.data)}
