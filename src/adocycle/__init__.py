"""Azure DevOps work item lifecycle automation.

This package provides the adocycle CLI:
- start: create a work item branch, link it, set state Committed
- finish: create or reuse a pull request, link it, set state In Review
- repo: manage the default repository
"""

__version__ = "0.1.0"
