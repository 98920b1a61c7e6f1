from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import StratumConfig, load_config
from .deploy import Deployer, initialize
from .errors import AlreadyDeployedError, StratumError
from .lib.bootloader import SystemdBootRegistry
from .lib.env import PATHS
from .lib.initramfs import DracutInitramfsBuilder
from .lib.preflight import require_initialized, require_root, require_tools
from .lib.storage import BtrfsFilesystem
from .logging_utils import DEFAULT_LOG_PATH, configure_logging

logger = logging.getLogger(__name__)

DeployerFactory = Callable[[StratumConfig], Deployer]

CONFIRM_WORD = "yes"


def build_deployer(cfg: StratumConfig, *, privileged: bool = True) -> Deployer:
    if privileged:
        require_root()
        require_tools()
    return Deployer(
        cfg,
        fs=BtrfsFilesystem(),
        boot_registry=SystemdBootRegistry(cfg.entries_dir),
        initramfs=DracutInitramfsBuilder(),
    )


def _confirm(prompt: str) -> bool:
    try:
        return input(f"{prompt} [type '{CONFIRM_WORD}' to continue] ").strip().lower() == CONFIRM_WORD
    except EOFError:
        return False


def cmd_init(args: argparse.Namespace, factory: Optional[DeployerFactory]) -> int:
    if factory is None:
        require_root()
    overrides: Dict[str, Any] = {}
    if args.repo_url:
        overrides["repo_url"] = args.repo_url
    if args.image:
        overrides["repo_default_image"] = args.image
    if args.keep is not None:
        overrides["deploy_keep"] = args.keep
    if args.enable_overlay:
        overrides["enable_overlay"] = True
    paths: Dict[str, str] = {}
    if args.data_root:
        paths["data_root"] = args.data_root
    if args.boot_dir:
        boot = Path(args.boot_dir)
        paths["boot_artifacts_dir"] = str(boot / "stratum")
        paths["entries_dir"] = str(boot / "loader/entries")
    if paths:
        overrides["paths"] = paths
    cfg = initialize(args.config, overrides)
    print(f"Initialized {cfg.data_root} (config: {args.config})")
    return 0


def cmd_deploy(args: argparse.Namespace, deployer: Deployer) -> int:
    result = deployer.deploy(args.target, args.version)
    print(f"Deployed {result.deployment_id} ({result.target} {result.version}); it will be used on next boot.")
    for removed in result.collected:
        print(f"Removed old deployment {removed}")
    if result.collect_error:
        print(f"warning: {result.collect_error}", file=sys.stderr)
    return 0


def cmd_update(args: argparse.Namespace, deployer: Deployer) -> int:
    result = deployer.update(args.target, check_only=args.check)
    if result.installed and result.deployed is None:
        print(f"Up to date ({result.available.id})")
    elif result.deployed is None:
        print(f"Update available: {result.available.id} (version {result.available.version})")
    else:
        print(f"Updated to {result.deployed.deployment_id}; it will be used on next boot.")
    return 0


def cmd_list(args: argparse.Namespace, deployer: Deployer) -> int:
    ids = deployer.list_deployments()
    if not ids:
        print("No deployments")
    for n, ident in enumerate(ids):
        print(f"{'*' if n == 0 else ' '} {ident}")
    return 0


def cmd_get_available(args: argparse.Namespace, deployer: Deployer) -> int:
    for target in deployer.available_targets():
        print(target)
    return 0


def cmd_teardown(args: argparse.Namespace, deployer: Deployer) -> int:
    print(f"This removes every deployment, the shared var, the cache and {args.config}.")
    if not _confirm("Are you sure?") or not _confirm("This cannot be undone. Really remove everything?"):
        print("Aborted")
        return 1
    deployer.teardown(args.config)
    print("All managed state removed")
    return 0


COMMANDS = {
    "deploy": cmd_deploy,
    "update": cmd_update,
    "list": cmd_list,
    "get-available": cmd_get_available,
    "teardown": cmd_teardown,
}

# Read-only commands run unprivileged.
UNPRIVILEGED = {"list", "get-available"}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="stratum", description="Atomic image-based OS deployments")
    p.add_argument("--config", default=PATHS.config_default, help="Path to config.yaml")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to log file")
    p.add_argument("-v", "--verbose", action="store_true", help="Show progress on the console")

    sub = p.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create directory structure and default config")
    init.add_argument("--repo-url", default=None)
    init.add_argument("--image", default=None, help="Default target image")
    init.add_argument("--keep", type=int, default=None, help="Deployments to retain")
    init.add_argument("--enable-overlay", action="store_true")
    init.add_argument("--data-root", default=None, help="Btrfs directory holding deployments")
    init.add_argument("--boot-dir", default=None, help="Mounted ESP or /boot (default /boot)")

    deploy = sub.add_parser("deploy", help="Install a target version")
    deploy.add_argument("target", nargs="?", default=None)
    deploy.add_argument("version", nargs="?", default="latest")

    update = sub.add_parser("update", help="Deploy the newest version if not installed")
    update.add_argument("target", nargs="?", default=None)
    update.add_argument("--check", action="store_true", help="Only report whether an update exists")

    sub.add_parser("list", help="List installed deployments, newest first")
    sub.add_parser("get-available", help="List targets offered by the repository")
    sub.add_parser("teardown", help="Remove all managed state")
    return p


def main(argv: Optional[list[str]] = None, *, factory: Optional[DeployerFactory] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(log_path=args.log, console_level=logging.INFO if args.verbose else None)

    try:
        if args.command == "init":
            return cmd_init(args, factory)

        require_initialized(args.config)
        cfg = load_config(args.config)
        if factory is not None:
            deployer = factory(cfg)
        else:
            deployer = build_deployer(cfg, privileged=args.command not in UNPRIVILEGED)
        return COMMANDS[args.command](args, deployer)
    except AlreadyDeployedError as e:
        print(f"{e}; nothing to do")
        return 0
    except StratumError as e:
        logger.info("%s failed: %s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.info("%s failed", args.command, exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
