"""
CLI interface for rolodex.

Usage:
    rolodex list                              # Show saved hosts
    rolodex connect web1                      # Interactive shell on a saved host
    rolodex add --name web1 --host 10.0.0.5 --user deploy --ssh-agent
    rolodex add --name db1 --host db.internal --user admin --password
    rolodex delete web1
    rolodex keyring set rolodex web1          # Prompts for the secret
    rolodex keyring delete rolodex web1
    rolodex --events events.jsonl connect web1
    rolodex --known-hosts ~/.ssh/known_hosts connect web1
"""
from __future__ import annotations

import argparse
import getpass
import logging
import shutil
import sys
from datetime import date
from pathlib import Path

from rolodex.config import DEFAULT_PORT, HostConfiguration, HostRecord
from rolodex.errors import RolodexError
from rolodex.events import EventEmitter
from rolodex.keyring_store import delete_from_keyring, store_in_keyring
from rolodex.platform import check_key_file, discover_keys, expand_path, get_config_path, get_log_dir
from rolodex.probe import DEFAULT_PROBE_TIMEOUT
from rolodex.session import DEFAULT_HANDSHAKE_TIMEOUT, start_session

logger = logging.getLogger("rolodex")

CLEAR_SCREEN = "\033[H\033[2J"

_file_handler: logging.Handler | None = None


def setup_logging(log_dir: Path, verbose: bool = False) -> Path:
    """
    Send log records to a dated file in log_dir (one file per day).

    Returns:
        Path of the log file
    """
    global _file_handler

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"rolodex_{date.today().isoformat()}.log"

    root = logging.getLogger()
    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()

    _file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    _file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    root.addHandler(_file_handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger("asyncssh").setLevel(logging.DEBUG if verbose else logging.WARNING)

    return log_path


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="rolodex",
        description="Keep a list of SSH hosts and open interactive shells on them",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Host configuration file (default: config.json in the rolodex directory)",
    )
    parser.add_argument(
        "--events",
        type=Path,
        default=None,
        metavar="PATH",
        help="Append structured session events to PATH as JSON lines",
    )
    parser.add_argument(
        "--known-hosts",
        default=None,
        metavar="PATH",
        help="Verify server host keys against this known_hosts file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug detail, including the SSH protocol layer",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="Show saved hosts")

    connect = subparsers.add_parser("connect", help="Open an interactive shell on a saved host")
    connect.add_argument("name", help="Host name as saved")
    connect.add_argument(
        "--probe-timeout",
        type=float,
        default=DEFAULT_PROBE_TIMEOUT,
        help=f"Reachability check timeout in seconds (default: {DEFAULT_PROBE_TIMEOUT:g})",
    )
    connect.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_HANDSHAKE_TIMEOUT,
        help=f"SSH handshake timeout in seconds (default: {DEFAULT_HANDSHAKE_TIMEOUT:g})",
    )

    add = subparsers.add_parser("add", help="Save a new host")
    add.add_argument("--name", required=True)
    add.add_argument("--host", required=True, help="Hostname or IP address")
    add.add_argument("--user", required=True, help="Remote login name")
    add.add_argument("--port", type=int, default=DEFAULT_PORT)
    add.add_argument("--ssh-agent", action="store_true", help="Offer keys from the SSH agent")
    add.add_argument("--identity-file", help="Private key file")
    add.add_argument(
        "--identity-passphrase",
        action="store_true",
        help="Prompt for the identity file passphrase and save it",
    )
    add.add_argument("--keyring-service", help="Keyring service holding the password")
    add.add_argument("--keyring-account", help="Keyring account holding the password")
    add.add_argument(
        "--password",
        action="store_true",
        help="Prompt for a password and save it in the host file",
    )

    delete = subparsers.add_parser("delete", help="Remove a saved host")
    delete.add_argument("name")

    keyring_cmd = subparsers.add_parser("keyring", help="Manage passwords in the OS keyring")
    keyring_sub = keyring_cmd.add_subparsers(dest="keyring_command", required=True)
    keyring_set = keyring_sub.add_parser("set", help="Store a password (prompts for it)")
    keyring_set.add_argument("service")
    keyring_set.add_argument("account")
    keyring_delete = keyring_sub.add_parser("delete", help="Remove a stored password")
    keyring_delete.add_argument("service")
    keyring_delete.add_argument("account")

    return parser


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_list(config: HostConfiguration) -> int:
    records = list(config.iter_hosts())
    if not records:
        print(f"No hosts saved in {config.path}. Add one with: rolodex add")
        return 0

    for folder, record in records:
        name = f"{folder}/{record.name}" if folder else record.name
        print(f"{name:<30} {record.user}@{record.host}:{record.port}")
    return 0


def cmd_connect(args: argparse.Namespace, config: HostConfiguration, log_path: Path) -> int:
    record = config.find(args.name)
    if record is None:
        print(f"Error: No host named {args.name}", file=sys.stderr)
        return 1

    logger.info("Connecting to %s (%s@%s:%d)", record.name, record.user, record.host, record.port)

    emitter = EventEmitter(
        jsonl_path=args.events,
        logger=logging.getLogger("rolodex.session"),
    )
    size = shutil.get_terminal_size()

    sys.stdout.write(CLEAR_SCREEN)
    sys.stdout.flush()

    try:
        result = start_session(
            record.host,
            record.port,
            record.user,
            record.bundle(),
            size.columns,
            size.lines,
            emitter=emitter,
            probe_timeout=args.probe_timeout,
            handshake_timeout=args.timeout,
            known_hosts=args.known_hosts,
        )
    finally:
        emitter.close()

    if result.failure is not None:
        logger.error("Session to %s failed: %s", record.name, result.failure.message)
        print(f"Error: {result.failure.message}", file=sys.stderr)
        print(f"See {log_path} for details.", file=sys.stderr)
        return 1

    logger.info("Session to %s ended with status %s", record.name, result.exit_status)
    return result.exit_status if result.exit_status is not None else 0


def cmd_add(args: argparse.Namespace, config: HostConfiguration) -> int:
    identity_file = args.identity_file
    if identity_file:
        problem, message = check_key_file(expand_path(identity_file))
        if message:
            print(f"{'Error' if problem else 'Warning'}: {message}", file=sys.stderr)
        if problem:
            return 1

    passphrase = getpass.getpass("Identity passphrase: ") if args.identity_passphrase else None
    password = getpass.getpass("Password: ") if args.password else None

    record = HostRecord(
        name=args.name,
        host=args.host,
        user=args.user,
        port=args.port,
        ssh_agent=args.ssh_agent,
        identity_file=identity_file,
        identity_passphrase=passphrase or None,
        keyring_service=args.keyring_service,
        keyring_account=args.keyring_account,
        password=password or None,
    )
    config.add(record)
    logger.info("Added host %s", record.name)
    print(f"Saved {record.name} to {config.path}")

    if record.bundle().is_empty():
        print("Warning: no credential configured for this host.", file=sys.stderr)
        found = discover_keys()
        if found:
            print("Keys found that could be used with --identity-file:", file=sys.stderr)
            for path in found:
                print(f"  {path}", file=sys.stderr)
    return 0


def cmd_delete(args: argparse.Namespace, config: HostConfiguration) -> int:
    record = config.delete(args.name)
    logger.info("Deleted host %s", record.name)
    print(f"Deleted {record.name}")
    return 0


def cmd_keyring(args: argparse.Namespace) -> int:
    if args.keyring_command == "set":
        secret = getpass.getpass(f"Password for {args.service}/{args.account}: ")
        store_in_keyring(args.service, args.account, secret)
        print(f"Stored password for {args.service}/{args.account}")
    else:
        delete_from_keyring(args.service, args.account)
        print(f"Deleted password for {args.service}/{args.account}")
    return 0


def run_command(args: argparse.Namespace, log_path: Path) -> int:
    """Dispatch a parsed command and return the process exit code."""
    if args.command == "keyring":
        return cmd_keyring(args)

    config_path = args.config if args.config is not None else get_config_path()
    config = HostConfiguration.load(config_path, missing_ok=args.command in ("add", "list"))

    if args.command == "list":
        return cmd_list(config)
    if args.command == "connect":
        return cmd_connect(args, config, log_path)
    if args.command == "add":
        return cmd_add(args, config)
    return cmd_delete(args, config)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    log_path = setup_logging(get_log_dir(), args.verbose)
    logger.info("=== Rolodex session started ===")

    try:
        return run_command(args, log_path)
    except RolodexError as e:
        logger.error("%s: %s", e.error_type, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    finally:
        logger.info("=== Rolodex session ended ===")


if __name__ == "__main__":
    sys.exit(main())
