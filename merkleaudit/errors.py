"""
Error Types Module

All failures raised by merkleaudit derive from ``MerkleAuditError`` and record
the operation they happened in, so a run that aborts can always say whether
it died while opening the store, resolving a node, inserting or committing.

Example:
    >>> from merkleaudit.errors import ResolutionError
    >>> try:
    ...     tree.resolve(ref)
    ... except ResolutionError as e:
    ...     print(e.operation, e)
"""

from typing import Optional


class MerkleAuditError(Exception):
    """Base class for every error raised by merkleaudit.

    Attributes:
        operation: Name of the failed operation ('open', 'resolve',
            'insert', 'commit' or 'generate').
    """

    operation = 'unknown'

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        if operation is not None:
            self.operation = operation

    def __str__(self) -> str:
        return f"{self.operation}: {super().__str__()}"


class GeneratorError(MerkleAuditError):
    """Raised for invalid generator input.

    The LCG arithmetic itself is total over 32-bit wraparound and never
    fails; this only covers malformed seeds or pool sizes.
    """

    operation = 'generate'


class ResolutionError(MerkleAuditError):
    """Raised when a lazy hash reference cannot be resolved.

    Covers missing backing files, truncated regions, unknown node tags and
    hash mismatches.
    """

    operation = 'resolve'


class WriteError(MerkleAuditError):
    """Raised on I/O failure while inserting or committing."""

    operation = 'commit'


class StoreMissingError(MerkleAuditError):
    """Raised when an inspection tool is pointed at a non-existent store."""

    operation = 'open'
