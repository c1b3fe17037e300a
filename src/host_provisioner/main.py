"""CLI entry point for Host Provisioner."""

import argparse
import sys
from pathlib import Path
from typing import List, NoReturn, Optional

import structlog

from host_provisioner import __version__
from host_provisioner.components.base import StepContext
from host_provisioner.config import ProvisionerConfig
from host_provisioner.exceptions import ConfigurationError, PrivilegeError, ProvisionerError
from host_provisioner.logging_setup import configure_logging
from host_provisioner.orchestrator import Console, Orchestrator
from host_provisioner.system_info import SystemInfo
from host_provisioner.utils.command import CommandRunner
from host_provisioner.utils.file import ConfigWriter

logger = structlog.get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Host Provisioner - interactive server setup and hardening",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Operations are chosen from the interactive menu:
  install all, install/uninstall/test one component, status, create admin user.

Examples:
  sudo host-provisioner
  sudo host-provisioner --config provisioner.yaml --verbose

Environment variables:
  SSH_PORT              - SSH port number
  SSH_ADMIN_USERS       - Comma-separated list of admin users
  DOCKER_ADD_USERS      - Users added to the docker group
  DESKTOP_USER          - Owner of the remote desktop session
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration file (YAML)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log commands and edits without applying them",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> ProvisionerConfig:
    """Load configuration from YAML when given, else from the environment."""
    if args.config:
        return ProvisionerConfig.from_yaml(args.config)
    return ProvisionerConfig.from_env()


def build_context(config: ProvisionerConfig, dry_run: bool = False) -> StepContext:
    runner = CommandRunner(dry_run=dry_run)
    return StepContext(
        config=config,
        runner=runner,
        writer=ConfigWriter(config.backup.directory, dry_run=dry_run),
        system=SystemInfo(runner),
    )


def main(argv: Optional[List[str]] = None) -> NoReturn:
    """Main entry point for CLI.

    Raises:
        SystemExit: Always exits with appropriate code
    """
    args = parse_args(argv)

    try:
        SystemInfo.require_root()
    except PrivilegeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.file, verbose=args.verbose)
    console = Console()

    print("╔══════════════════════════════════════╗")
    print(f"║  {'HOST PROVISIONER':<36}║")
    print(f"║  {'Version ' + __version__:<36}║")
    print("╚══════════════════════════════════════╝")
    if args.dry_run:
        print("DRY RUN MODE - No changes will be applied")

    try:
        ctx = build_context(config, dry_run=args.dry_run)
        for issue in ctx.system.check_requirements() + config.validate_config():
            console.warning(issue)
        sys.exit(Orchestrator(ctx, console).run())

    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        sys.exit(130)

    except PrivilegeError as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)

    except ProvisionerError as e:
        logger.error("fatal_error", error=str(e))
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
