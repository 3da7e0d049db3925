"""
HR Kernel

The workflow core of the HR approval suite:
- Template-driven, multi-step approval workflows
- Append-only action ledger with tamper-evident signatures
- Compare-and-swap guarded state transitions
- Structured logging and typed errors shared by all layers
"""

__version__ = "0.1.0"
