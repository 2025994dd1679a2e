"""
Kernel Boundary & Invariants Contract.

Tests that enforce the kernel's architectural boundaries:

1. inventory_kernel/** may NOT import inventory_config.  The kernel never
   depends upward; bootstrap() takes the config object by shape.

2. inventory_kernel/domain/** is pure: no ORM, DB driver or db/ imports
   at runtime.  dtos.py may name ORM types under TYPE_CHECKING only.

3. Selectors and models never import services.

4. The kernel invariants declaration is complete and non-empty.

These tests read source code via AST -- they cannot break anything.
"""

import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _python_files(root: str) -> list[Path]:
    """Return all .py files under root (relative to the repository)."""
    return sorted((REPO_ROOT / root).rglob("*.py"))


def _relative(path: Path) -> str:
    return path.relative_to(REPO_ROOT).as_posix()


def _parse(filepath: Path) -> ast.Module | None:
    try:
        return ast.parse(filepath.read_text(), filename=str(filepath))
    except (SyntaxError, UnicodeDecodeError):
        return None


def _type_checking_lines(tree: ast.Module) -> set[int]:
    """Line numbers inside ``if TYPE_CHECKING:`` blocks."""
    lines: set[int] = set()
    for node in ast.walk(tree):
        if not isinstance(node, ast.If):
            continue
        test = node.test
        is_type_checking = (
            isinstance(test, ast.Name) and test.id == "TYPE_CHECKING"
        ) or (isinstance(test, ast.Attribute) and test.attr == "TYPE_CHECKING")
        if is_type_checking:
            for child in node.body:
                lines.update(range(child.lineno, (child.end_lineno or child.lineno) + 1))
    return lines


def _extract_imports(filepath: Path, runtime_only: bool = False) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = _parse(filepath)
    if tree is None:
        return []
    skipped = _type_checking_lines(tree) if runtime_only else set()

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if getattr(node, "lineno", None) in skipped:
            continue
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _matches(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(root: str, forbidden: tuple[str, ...], runtime_only: bool = False) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(root):
        for lineno, module in _extract_imports(filepath, runtime_only=runtime_only):
            if _matches(module, forbidden):
                found.append(f"  {_relative(filepath)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Test: Kernel has no upward dependencies
# ---------------------------------------------------------------------------


class TestKernelNoUpwardDependencies:
    """inventory_kernel/** must not import inventory_config."""

    def test_kernel_does_not_import_forbidden_packages(self):
        from inventory_kernel.invariants import FORBIDDEN_KERNEL_IMPORTS

        violations = _violations("inventory_kernel", FORBIDDEN_KERNEL_IMPORTS)

        assert not violations, (
            "Kernel boundary violation: inventory_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )

    def test_kernel_files_found(self):
        """Guard against the scan silently matching nothing."""
        assert len(_python_files("inventory_kernel")) > 10


# ---------------------------------------------------------------------------
# Test: Kernel domain purity
# ---------------------------------------------------------------------------


class TestKernelDomainPurity:
    """inventory_kernel/domain/** must not import ORM or DB packages."""

    FORBIDDEN_MODULES = (
        "sqlalchemy",
        "psycopg2",
        "psycopg",
        "sqlite3",
        "inventory_kernel.db",
        "inventory_kernel.models",
        "inventory_kernel.services",
        "inventory_kernel.selectors",
    )

    def test_domain_no_orm_imports_at_runtime(self):
        violations = _violations(
            "inventory_kernel/domain", self.FORBIDDEN_MODULES, runtime_only=True
        )

        assert not violations, (
            "Domain purity violation: inventory_kernel/domain/** must not "
            "import ORM/DB packages at runtime:\n" + "\n".join(violations)
        )

    def test_dtos_orm_reference_is_type_checking_only(self):
        """dtos.py names the Stock model for from_model() typing only."""
        dtos = REPO_ROOT / "inventory_kernel" / "domain" / "dtos.py"
        all_imports = {m for _, m in _extract_imports(dtos)}
        runtime_imports = {m for _, m in _extract_imports(dtos, runtime_only=True)}

        assert "inventory_kernel.models.stock" in all_imports
        assert "inventory_kernel.models.stock" not in runtime_imports


# ---------------------------------------------------------------------------
# Test: Read side and models do not reach into services
# ---------------------------------------------------------------------------


class TestLayering:
    def test_selectors_do_not_import_services(self):
        violations = _violations("inventory_kernel/selectors", ("inventory_kernel.services",))
        assert not violations, "\n".join(violations)

    def test_models_do_not_import_services_or_selectors(self):
        violations = _violations(
            "inventory_kernel/models",
            ("inventory_kernel.services", "inventory_kernel.selectors"),
        )
        assert not violations, "\n".join(violations)


# ---------------------------------------------------------------------------
# Test: Invariants declaration exists and is complete
# ---------------------------------------------------------------------------


class TestKernelInvariantsDeclaration:
    """The kernel invariants contract must be declared and complete."""

    def test_invariants_module_exists(self):
        from inventory_kernel.invariants import ALL_KERNEL_INVARIANTS

        assert len(ALL_KERNEL_INVARIANTS) > 0

    def test_required_invariants_declared(self):
        from inventory_kernel.invariants import KernelInvariant

        required = {
            "LEDGER_SUM",
            "NON_NEGATIVE_QUANTITY",
            "APPEND_ONLY_ADJUSTMENTS",
            "DRAFT_ONLY_EDITS",
            "ATOMIC_CONFIRMATION",
            "ORDERED_LOCKING",
        }
        declared = {inv.name for inv in KernelInvariant}
        missing = required - declared
        assert not missing, f"Missing kernel invariants: {missing}"

    def test_forbidden_imports_declared(self):
        from inventory_kernel.invariants import FORBIDDEN_KERNEL_IMPORTS

        assert "inventory_config" in FORBIDDEN_KERNEL_IMPORTS
