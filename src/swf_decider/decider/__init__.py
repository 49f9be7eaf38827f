"""Decider components.

- `workflow`: history reduction, templates, the decision builder and retries
- `swf`: the boto3-backed service client
- `runner`: the poll/decide/respond worker loop
"""
