"""
Import-boundary enforcement.

1. Engine purity       -- hr_engines/** may not import DB drivers, ORM,
                          kernel models/db/services, config or modules.
2. Engine no-impure    -- hr_engines/** may not call wall-clock or
                          environment functions.
3. Domain purity       -- hr_kernel/domain/** may not import the ORM.
4. Kernel direction    -- hr_kernel/** never imports hr_config or hr_modules.
5. Config centralisation -- outside hr_config, only the package root and
                          ``hr_config.bridges`` are imported.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _extract_attribute_calls(filepath: Path) -> list[tuple[int, str]]:
    """Return (line_number, 'receiver.attr') for two-level attribute references."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if _matches_any(module, forbidden):
                found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestEnginePurity:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "hr_kernel.db",
        "hr_kernel.models",
        "hr_kernel.services",
        "hr_config",
        "hr_modules",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("hr_engines", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "hr_engines/** must stay free of persistence and outer layers:\n"
            + "\n".join(violations)
        )


class TestEngineNoImpureFunctions:
    """Engines take time as an argument.  ``time.monotonic`` is allowed for tracing."""

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_no_impure_calls_in_engines(self):
        violations = [
            f"  {filepath.relative_to(ROOT)}:{lineno} calls '{qualname}'"
            for filepath in _python_files("hr_engines")
            for lineno, qualname in _extract_attribute_calls(filepath)
            if qualname in self.FORBIDDEN_CALLS
        ]
        assert not violations, (
            "Use an explicit clock or argument instead:\n" + "\n".join(violations)
        )


def test_domain_does_not_import_orm():
    violations = _violations("hr_kernel/domain", ("sqlalchemy", "hr_kernel.db", "hr_kernel.models"))
    assert not violations, "\n".join(violations)


def test_kernel_never_imports_outer_layers():
    violations = _violations("hr_kernel", ("hr_config", "hr_modules"))
    assert not violations, "\n".join(violations)


def test_config_internals_stay_internal():
    allowed = ("hr_config", "hr_config.bridges")
    violations = []
    for package in ("hr_kernel", "hr_engines", "hr_modules"):
        for filepath in _python_files(package):
            for lineno, module in _extract_imports(filepath):
                if _matches_any(module, ("hr_config",)) and module not in allowed:
                    violations.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    assert not violations, "\n".join(violations)
