"""
Consolidation Kernel

Shared foundation for the consolidation engine:
- Typed, categorized error taxonomy
- Structured JSON logging with run-scoped context
- Decimal-only money and exchange-rate values
- Hash-chained audit trail for run transitions
- SQLAlchemy persistence base
"""

__version__ = "0.1.0"
