"""
Payment Modules.

Business modules built over the payment kernel and engines.  Each module
carries its value objects (models), persistence (orm) and a service
facade; calculation is delegated to ``payment_engines``.

Modules:
- Remittance: investor contracts, remittance cycles, exports and
  reconciliation against the general ledger
"""

from payment_modules import remittance

__all__ = ["remittance"]
