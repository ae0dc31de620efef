"""
Billing Kernel

Shared foundation for the daycare billing & accrual engine:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- SQLAlchemy persistence (models, selectors, engine/session handling)
- Calendar, validation and scope value objects
"""

__version__ = "0.1.0"
