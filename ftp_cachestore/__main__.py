"""
ftp-cachestore - command line entry point.

Drives FTPStorage from the shell: browse folders and listings (served
from the directory cache when fresh) and run the mutating operations,
which keep the cache in step with the server.
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import load_config
from .entry import Entry, Folder
from .errors import StorageError
from .logger import setup_logging
from .storage import FTPStorage, UploadedFile

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command-line arguments."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to configuration file")
    common.add_argument("--host", help="Server host")
    common.add_argument("--port", type=int, help="Server port")
    common.add_argument("--user", help="Username (anonymous if omitted)")
    common.add_argument("--password", help="Password")
    common.add_argument("--protocol", choices=["ftp", "ftps", "sftp"], default=None)
    common.add_argument("--key-file", help="Path to SSH private key (SFTP only)")
    common.add_argument("--cache-dir", help="Directory holding the listing cache")
    common.add_argument("--base-path", help="Remote directory used as the root")
    common.add_argument("--verbose", action="store_true", help="Enable debug logging")

    parser = argparse.ArgumentParser(
        description="ftp-cachestore - cached file manager storage for FTP/SFTP servers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ftp-cachestore ls /photos --host ftp.example.com --cache-dir ./cache
  ftp-cachestore upload /photos img1.jpg img2.jpg --config storage.ini
  ftp-cachestore mv /photos /archive old.jpg --config storage.ini
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("folders", parents=[common], help="Show the folder tree")

    ls_parser = subparsers.add_parser("ls", parents=[common], help="List files in a folder")
    ls_parser.add_argument("path", nargs="?", default="/")
    ls_parser.add_argument("--refresh", action="store_true", help="Bypass the cache")

    mkdir_parser = subparsers.add_parser("mkdir", parents=[common], help="Create a folder")
    mkdir_parser.add_argument("path")
    mkdir_parser.add_argument("name")

    upload_parser = subparsers.add_parser("upload", parents=[common], help="Upload local files")
    upload_parser.add_argument("path")
    upload_parser.add_argument("files", nargs="+")
    upload_parser.add_argument("--no-overwrite", action="store_true", help="Skip existing files")
    upload_parser.add_argument("--normalize", action="store_true", help="Normalize file names")

    rm_parser = subparsers.add_parser("rm", parents=[common], help="Delete files or folders")
    rm_parser.add_argument("path")
    rm_parser.add_argument("names", nargs="+")

    rename_parser = subparsers.add_parser("rename", parents=[common], help="Rename an item")
    rename_parser.add_argument("path")
    rename_parser.add_argument("old_name")
    rename_parser.add_argument("new_name")

    for command, help_text in (("cp", "Copy items"), ("mv", "Move items")):
        transfer_parser = subparsers.add_parser(command, parents=[common], help=help_text)
        transfer_parser.add_argument("path")
        transfer_parser.add_argument("target")
        transfer_parser.add_argument("names", nargs="+")

    sweep_parser = subparsers.add_parser("sweep", parents=[common], help="Remove expired cache files")
    sweep_parser.add_argument("--all", action="store_true", help="Remove every cache file")

    return parser.parse_args(argv)


def _print_folders(folders: list[Folder], depth: int = 0) -> None:
    for folder in folders:
        print(f"{'  ' * depth}{folder.name}/  ({folder.path})")
        _print_folders(folder.children, depth + 1)


def _print_entry(entry: Entry) -> None:
    if entry.is_dir:
        print(f"{'<DIR>':>12}  {entry.modified:19}  {entry.name}/")
        return
    line = f"{entry.size:>12}  {entry.modified:19}  {entry.name}"
    if entry.width and entry.height:
        line += f"  [{entry.width}x{entry.height}]"
    print(line)


def cmd_folders(storage: FTPStorage, args) -> int:
    _print_folders(storage.list_folders())
    return 0


def cmd_ls(storage: FTPStorage, args) -> int:
    for entry in storage.list_files(args.path, skip_cache=args.refresh).values():
        _print_entry(entry)
    return 0


def cmd_mkdir(storage: FTPStorage, args) -> int:
    storage.make_dir(args.path, args.name)
    print(f"[OK] Created {args.name}")
    return 0


def cmd_upload(storage: FTPStorage, args) -> int:
    files = []
    for local in args.files:
        local_path = Path(local)
        if not local_path.is_file():
            print(f"[ERROR] Not a file: {local}")
            return 1
        files.append(UploadedFile(name=local_path.name, tmp_path=local_path))
    for name in storage.upload(args.path, files):
        print(f"[OK] Uploaded {name}")
    return 0


def cmd_rm(storage: FTPStorage, args) -> int:
    storage.delete(args.path, args.names)
    print(f"[OK] Deleted {len(args.names)} item(s)")
    return 0


def cmd_rename(storage: FTPStorage, args) -> int:
    storage.rename(args.path, args.old_name, args.new_name)
    print(f"[OK] Renamed {args.old_name} to {args.new_name}")
    return 0


def cmd_cp(storage: FTPStorage, args) -> int:
    storage.copy(args.path, args.names, args.target)
    print(f"[OK] Copied {len(args.names)} item(s) to {args.target}")
    return 0


def cmd_mv(storage: FTPStorage, args) -> int:
    storage.move(args.path, args.names, args.target)
    print(f"[OK] Moved {len(args.names)} item(s) to {args.target}")
    return 0


def cmd_sweep(storage: FTPStorage, args) -> int:
    if args.all:
        removed = storage.cache.clear()
    else:
        removed = storage.cache.sweep_expired()
    print(f"[OK] Removed {removed} cache file(s)")
    return 0


COMMANDS = {
    "folders": cmd_folders,
    "ls": cmd_ls,
    "mkdir": cmd_mkdir,
    "upload": cmd_upload,
    "rm": cmd_rm,
    "rename": cmd_rename,
    "cp": cmd_cp,
    "mv": cmd_mv,
    "sweep": cmd_sweep,
}


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        print("Usage: ftp-cachestore <command> [options]")
        print()
        print("Commands: " + ", ".join(COMMANDS))
        print()
        print("Run 'ftp-cachestore <command> --help' for more information.")
        return 1

    try:
        config = load_config(
            config_path=args.config,
            host=args.host,
            port=args.port,
            username=args.user,
            password=args.password,
            protocol=args.protocol,
            key_file=args.key_file,
            cache_dir=args.cache_dir,
            base_path=args.base_path,
            overwrite_files=False if getattr(args, "no_overwrite", False) else None,
            normalize_names=True if getattr(args, "normalize", False) else None,
            debug=args.verbose,
        )
    except (ValueError, FileNotFoundError, StorageError) as e:
        print(f"[ERROR] Configuration error: {e}")
        return 1

    setup_logging(config.logging)

    try:
        with FTPStorage(config) as storage:
            return handler(storage, args)
    except StorageError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        cause = f" ({e.__cause__})" if e.__cause__ else ""
        print(f"[ERROR] {e}{cause}")
        return 1
    except OSError as e:
        # Local failures, such as an unwritable cache directory
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
