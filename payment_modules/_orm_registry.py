"""
Module ORM Registry (``payment_modules._orm_registry``).

Responsibility
--------------
Make sure every ORM model is imported so ``Base.metadata`` holds its table
before tables are created, and tell the kernel's immutability listeners
which module-owned models are append-only evidence.

Architecture position
---------------------
**Modules layer** -- utility.  Imports kernel models and
``payment_modules.*.orm``.  The kernel reaches it lazily from
``register_immutability_listeners()`` and ``create_tables()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every module ORM.  Idempotent."""
    # fmt: off
    import payment_kernel.models  # noqa: F401
    import payment_modules.remittance.orm  # noqa: F401
    # fmt: on


def append_only_models() -> list[type]:
    """Module models that must never be updated or deleted once flushed."""
    from payment_modules.remittance.orm import ReconciliationSnapshot, RemittanceExport

    return [ReconciliationSnapshot, RemittanceExport]


def create_all_tables() -> None:
    """
    Create every kernel and module table.

    Preconditions:
        Engine initialized via ``init_engine_from_url()``.
    """
    from payment_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
