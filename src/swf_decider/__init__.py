"""swf-decider.

A client-side decider for Amazon SWF:
- workflow templates map history events to handlers
- handlers append decisions to a per-task builder
- activity retries and workflow closure are replay-safe, derived from history
"""

__version__ = "0.1.0"

from swf_decider.decider.workflow.decisions import DecisionBuilder
from swf_decider.decider.workflow.events import ActivityType, WorkflowType
from swf_decider.decider.workflow.templates import (
    EventCategory,
    EventContext,
    EventHandler,
    TemplateRegistry,
    WorkflowTemplate,
)

__all__ = [
    "__version__",
    "ActivityType",
    "DecisionBuilder",
    "EventCategory",
    "EventContext",
    "EventHandler",
    "TemplateRegistry",
    "WorkflowTemplate",
    "WorkflowType",
]
