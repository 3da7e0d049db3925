"""
Module ORM Registry (``hr_modules._orm_registry``).

Responsibility
--------------
Ensure the kernel and every module-level ORM model are imported so that
``Base.metadata`` holds their table definitions before tables are created.
``create_all_tables()`` is the entry point for scripts and tests that need
the full schema.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from sibling ``hr_modules``
packages and from ``hr_kernel.db.engine`` (allowed: modules -> kernel).
MUST NOT be imported by ``hr_kernel``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``hr_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    import hr_kernel.models  # noqa: F401
    import hr_modules.timesheet.orm  # noqa: F401


def create_all_tables() -> None:
    """Create kernel + module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from hr_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()
