"""
Agency Kernel

Shared foundation for the agency back-office computation engine:
- Typed, coded exceptions
- Structured JSON logging with request-scoped context
- Decimal value objects and immutable domain records
- SQLAlchemy persistence for derived rows (forecasts, P&L lines, payout lines)
"""

__version__ = "0.1.0"
