"""Command execution utilities."""

import os
import re
import subprocess
from typing import Dict, Iterable, Optional

import structlog

from host_provisioner.exceptions import ExternalCommandError
from host_provisioner.types import CommandResult, Outcome

logger = structlog.get_logger(__name__)

# Output fragments that mean "nothing to do" rather than a real failure.
ALREADY_INSTALLED = (
    r"is already the newest version",
    r"already exists",
    r"Skipping adding existing rule",
    r"is already a member",
)
ALREADY_ABSENT = (
    r"is not installed, so not removed",
    r"Unable to locate package",
    r"not loaded",
    r"does not exist",
    r"No such file or directory",
    r"Could not delete non-existent rule",
    r"not found",
)


class CommandRunner:
    """Execute system commands and classify their outcome."""

    def __init__(self, dry_run: bool = False, env: Optional[Dict[str, str]] = None) -> None:
        """Initialize command runner.

        Args:
            dry_run: If True, log mutating commands without executing them;
                quiet probes still run
            env: Extra environment variables for every command
        """
        self.dry_run = dry_run
        self.env = {"DEBIAN_FRONTEND": "noninteractive"}
        if env:
            self.env.update(env)

    def execute(
        self,
        cmd: str,
        benign: Iterable[str] = (),
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
        quiet: bool = False,
    ) -> CommandResult:
        """Execute command and classify the result.

        Never raises on a non-zero exit; the caller decides whether the
        result aborts the current operation.

        Args:
            cmd: Shell command line to execute
            benign: Regex patterns which, when found in the output of a
                failed command, mark it as an expected failure
            input_text: Text fed to the command's stdin
            timeout: Optional timeout in seconds; None waits for the command
            quiet: Read-only probe; logged at debug level and run even in
                dry-run mode

        Returns:
            CommandResult with execution details
        """
        log = logger.bind(command=cmd)
        if self.dry_run and not quiet:
            log.info("dry_run_command")
            return CommandResult(Outcome.SUCCESS, f"[DRY RUN] {cmd}", "", 0)

        try:
            proc = subprocess.run(
                cmd,
                shell=True,
                capture_output=True,
                text=True,
                input=input_text,
                timeout=timeout,
                check=False,
                env={**os.environ, **self.env},
            )
        except subprocess.TimeoutExpired:
            log.error("command_timeout", timeout=timeout)
            return CommandResult(
                Outcome.UNEXPECTED_FAILURE, "", f"Command timed out after {timeout}s", -1
            )
        except OSError as e:
            log.error("command_error", error=str(e))
            return CommandResult(Outcome.UNEXPECTED_FAILURE, "", str(e), -1)

        result = self.classify(proc.returncode, proc.stdout, proc.stderr, benign)
        if quiet:
            log.debug("command_finished", outcome=result.outcome.value, rc=result.return_code)
        elif result.failed:
            log.warning("command_failed", rc=result.return_code, stderr=result.stderr.strip())
        else:
            log.info("command_finished", outcome=result.outcome.value)
        return result

    @staticmethod
    def classify(
        return_code: int, stdout: str, stderr: str, benign: Iterable[str] = ()
    ) -> CommandResult:
        """Map an exit status and output onto an Outcome."""
        if return_code == 0:
            return CommandResult(Outcome.SUCCESS, stdout, stderr, return_code)

        output = stdout + stderr
        for pattern in benign:
            if re.search(pattern, output, re.IGNORECASE):
                return CommandResult(Outcome.EXPECTED_FAILURE, stdout, stderr, return_code)
        return CommandResult(Outcome.UNEXPECTED_FAILURE, stdout, stderr, return_code)

    def check(
        self,
        cmd: str,
        benign: Iterable[str] = (),
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        """Execute command, raising on unexpected failure.

        Raises:
            ExternalCommandError: If the command fails unexpectedly
        """
        result = self.execute(cmd, benign=benign, input_text=input_text, timeout=timeout)
        if result.failed:
            raise ExternalCommandError(cmd, result)
        return result

    def command_available(self, command: str) -> bool:
        """Check if command is available on system."""
        return self.execute(f"command -v {command}", quiet=True).succeeded
