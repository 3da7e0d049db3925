"""
HR Modules.

Specializations built on the HR kernel and engines.

Modules:
- Timesheet: N-level pay period approval and payroll settlement
"""

from hr_modules import timesheet

__all__ = ["timesheet"]
