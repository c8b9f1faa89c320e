"""
IPR Kernel

Workflow core for intellectual-property disclosures:
- Permission-gated state machine with an append-only review trail
- Collaborative field suggestions with explicit applicant responses
- Exactly-once incentive crediting on publication
"""

__version__ = "0.1.0"
