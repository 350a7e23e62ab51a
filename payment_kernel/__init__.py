"""
Payment Kernel

The integrity core of the loan-servicing payment pipeline:
- Idempotent payment ingestion
- Evidence artifacts with verifiable hashes
- Hash-chained payment events and compliance audit trail
- Typed messaging with idempotent consumption and dead-lettering
"""

__version__ = "0.1.0"
