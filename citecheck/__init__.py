"""
Citecheck: legal citation identification and tiered validation.

Subpackages:
- citations: pattern matching, normalization, markers, context, Tier 1 format checks
- verification: evaluator agents, consensus panels (Tier 2 / Tier 3), audit logging
- jobs: durable document store, verification queue and job orchestration
"""

__version__ = "0.1.0"
