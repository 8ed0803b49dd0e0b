"""Exit codes for the relorch CLI.

Each code maps to one family of failures so that CI wrappers calling the CLI
can tell an operator problem from a broken commit:
- 0: Success (including "nothing to release")
- 1: User error (bad input, invalid arguments)
- 2: Config error (invalid relorch.toml, tag conflict, ledger divergence)
- 3: Quality error (build, test, package or deploy failed)
- 4: Transient error (network, registry, publish retries exhausted)
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands. Values are stable."""

    OK = 0
    USER_ERROR = 1
    CONFIG_ERROR = 2
    QUALITY_ERROR = 3
    TRANSIENT_ERROR = 4

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK
