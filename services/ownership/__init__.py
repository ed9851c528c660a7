"""Ownership service.

Resolves who owns a Danish property and who to contact about it.

Components:
- Resolver: address → cadastral identifier (resolver.py)
- Classifier: ownership type and registry strategy (classifier.py)
- Matcher: scored business-registry matching (matcher.py)
- Research: registries + web evidence for one property (research.py)
- Analysis: two-phase constrained model analysis (analysis.py)
- Validator: evidence-based correction of model output (validator.py)
- Dedupe: cross-batch contact reuse penalties (dedupe.py)
- Email hunt: published e-mails for named contacts (email_hunt.py)
- Workflow: per-property state machine and batch runner (workflow.py)
"""

from services.ownership.config import OwnershipConfig
from services.ownership.workflow import (
    OwnershipWorkflow,
    PropertyOutcome,
    BatchResult,
    RunHistory,
    RawResearchStore,
    passes_quality_gate,
    request_shutdown,
)
