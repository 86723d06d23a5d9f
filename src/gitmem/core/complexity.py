"""Indentation-based complexity measurement for file contents."""

from dataclasses import dataclass
from pathlib import PurePosixPath

TAB_WIDTH = 4
BINARY_SNIFF_BYTES = 8192

GENERATED_FILENAMES = frozenset(
    {
        "package-lock.json",
        "yarn.lock",
        "bun.lockb",
        "pnpm-lock.yaml",
        "Gemfile.lock",
        "Cargo.lock",
        "composer.lock",
        "poetry.lock",
        "go.sum",
    }
)
GENERATED_EXTENSIONS = (".min.js", ".min.css", ".map", ".lock")


@dataclass(frozen=True)
class ComplexityResult:
    lines_of_code: int = 0
    indent_complexity: int = 0
    max_indent: int = 0

    def as_tuple(self) -> tuple[int, float, int]:
        return (self.lines_of_code, float(self.indent_complexity), self.max_indent)


ZERO = ComplexityResult()


def compute_complexity(content: str, tab_width: int = TAB_WIDTH) -> ComplexityResult:
    """Measure non-blank lines and their indentation depth.

    Each non-blank line contributes ``leading_spaces // tab_width`` to the
    complexity, where a tab counts as ``tab_width`` spaces.

    Examples:
        >>> compute_complexity("def f():\\n    return 1\\n")
        ComplexityResult(lines_of_code=2, indent_complexity=1, max_indent=1)
    """
    lines_of_code = 0
    total = 0
    deepest = 0
    for line in content.split("\n"):
        if not line.strip():
            continue
        lines_of_code += 1

        leading = 0
        for ch in line:
            if ch == " ":
                leading += 1
            elif ch == "\t":
                leading += tab_width
            else:
                break

        level = leading // tab_width
        total += level
        deepest = max(deepest, level)

    return ComplexityResult(lines_of_code, total, deepest)


def is_binary(content: bytes) -> bool:
    return b"\x00" in content[:BINARY_SNIFF_BYTES]


def is_generated(file_path: str) -> bool:
    """Lockfiles, minified bundles and source maps."""
    if PurePosixPath(file_path).name in GENERATED_FILENAMES:
        return True
    return file_path.endswith(GENERATED_EXTENSIONS)
