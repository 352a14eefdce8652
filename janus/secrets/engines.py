"""Secret engines backed by external credential tools."""

from __future__ import annotations

import subprocess
from typing import Callable, Dict, Iterable, List, Protocol

from ..errors import SecretResolutionError
from ..logging import get_logger

CommandBuilder = Callable[[str], List[str]]


class SecretEngine(Protocol):
    def resolve(self, engine: str, reference: str) -> str:
        """Return the secret value or raise :class:`SecretResolutionError`."""


def _onepassword(reference: str) -> List[str]:
    return ["op", "read", reference]


DEFAULT_COMMANDS: Dict[str, CommandBuilder] = {
    "1password": _onepassword,
}


class CommandSecretEngine:
    """Resolves secrets by running an engine-specific command and reading stdout."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        commands: Dict[str, CommandBuilder] | None = None,
        runner: Callable[..., str] | None = None,
    ) -> None:
        self.timeout = timeout
        self._commands = dict(commands or DEFAULT_COMMANDS)
        self._runner = runner or self._default_runner
        self.logger = get_logger("secrets.engine")

    def resolve(self, engine: str, reference: str) -> str:
        builder = self._commands.get(engine)
        if builder is None:
            raise SecretResolutionError(reference, f"unknown secret engine: {engine}")
        args = builder(reference)
        self.logger.debug("Running %s for %s", args[0], reference)
        try:
            output = self._runner(args, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise SecretResolutionError(
                reference, f"`{args[0]}` not found; is the {engine} CLI installed?"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise SecretResolutionError(
                reference, f"`{' '.join(args[:2])}` timed out after {self.timeout:g}s"
            ) from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise SecretResolutionError(
                reference, f"`{' '.join(args[:2])}` failed (exit {exc.returncode}): {stderr}"
            ) from exc
        value = output.strip()
        if not value:
            raise SecretResolutionError(reference, f"`{' '.join(args[:2])}` returned empty output")
        return value

    @staticmethod
    def _default_runner(args: Iterable[str], *, timeout: float) -> str:
        completed = subprocess.run(
            list(args),
            check=True,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
        return completed.stdout


__all__ = ["CommandSecretEngine", "DEFAULT_COMMANDS", "SecretEngine"]
