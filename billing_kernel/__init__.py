"""
Billing Kernel

Foundation layer of the billing and settlement engine:
- Single money rounding law (half away from zero, 2 decimals)
- Immutable value objects for occupancy, invoices, periods and SEPA legs
- Typed, coded exceptions
- Structured JSON logging
- Persistence contracts (in-memory and SQLAlchemy adapters)
"""

__version__ = "0.1.0"
