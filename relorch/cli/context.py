from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from relorch.core.config import CONFIG_FILE_NAME, Config, load_config
from relorch.core.errors import ErrorCode
from relorch.core.result import Err
from relorch.output.console import ConsoleProtocol, RichConsole

CONFIG_ENV = "RELORCH_CONFIG"


@dataclass(frozen=True, slots=True)
class CLIContext:
    root: Path
    config: Config
    console: ConsoleProtocol

    @property
    def ledger_path(self) -> Path:
        return self.root / self.config.ledger.path

    @property
    def releases_dir(self) -> Path:
        return self.root / self.config.ledger.releases_dir

    def default_branch(self) -> str:
        return self.config.orchestrator.branches[0]


def build_context() -> CLIContext:
    """Load relorch.toml from --config, or from the current directory if present."""
    override = os.environ.get(CONFIG_ENV)
    path = Path(override) if override else Path.cwd() / CONFIG_FILE_NAME

    config = Config()
    if override or path.exists():
        result = load_config(path)
        if isinstance(result, Err):
            typer.echo(f"error: {result.error.message}", err=True)
            raise typer.Exit(code=int(ErrorCode.CONFIG_ERROR))
        config = result.value

    return CLIContext(root=path.parent, config=config, console=RichConsole())
