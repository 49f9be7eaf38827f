"""Workflow decision logic.

Everything here is a pure function of the decision task's history: no network
calls, no clocks, no state kept between tasks. That is what makes a decision
safe to recompute when a task is redelivered.
"""

__all__: list[str] = []
