import ftplib
import logging
import posixpath
import socket
import threading
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from pathlib import Path

from .config import ConnectionConfig, FTPConfig

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}


@dataclass
class RemoteFile:
    """One raw entry of a remote directory listing."""

    name: str
    size: int
    mtime: datetime
    is_dir: bool
    path: str = ""


@dataclass
class RemoteDir:
    """Directory-only tree node returned by tree()."""

    name: str
    path: str
    subdirectories: list["RemoteDir"] = field(default_factory=list)


def join_path(directory: str, name: str) -> str:
    return posixpath.join(directory or "/", name)


class FTPClient:
    """
    Wrapper around ftplib.FTP / ftplib.FTP_TLS exposing the RemoteClient API.

    The connection is opened once by connect() and kept until disconnect().
    There is no automatic reconnect or retry: an operation on a dropped
    connection raises ConnectionError and the caller decides what to do.
    """

    def __init__(self, ftp_config: FTPConfig, conn_config: ConnectionConfig):
        self.ftp_config = ftp_config
        self.conn_config = conn_config
        self._ftp: ftplib.FTP | None = None
        self._lock = threading.Lock()
        self._connected = False
        self._supports_mlsd = False
        self._supports_mlst = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Connect and log in. No-op if already connected."""
        with self._lock:
            if self._connected:
                return
            self._connect_internal()

    def _connect_internal(self) -> None:
        """Internal connect without lock - caller must hold lock."""
        try:
            if self.ftp_config.secure:
                self._ftp = ftplib.FTP_TLS()
            else:
                self._ftp = ftplib.FTP()
            self._ftp.encoding = self.ftp_config.encoding

            logger.debug(
                "Connecting to FTP server %s:%d", self.ftp_config.host, self.ftp_config.port
            )
            self._ftp.connect(
                host=self.ftp_config.host,
                port=self.ftp_config.port,
                timeout=self.conn_config.timeout_seconds,
            )

            if self.ftp_config.username:
                logger.debug("Logging in as user: %s", self.ftp_config.username)
                self._ftp.login(
                    user=self.ftp_config.username, passwd=self.ftp_config.password or ""
                )
            else:
                logger.debug("Logging in anonymously")
                self._ftp.login()

            if self.ftp_config.secure:
                # Encrypt the data channel too, not only the control channel
                self._ftp.prot_p()

            self._ftp.set_pasv(self.ftp_config.passive_mode)
            self._connected = True
            logger.info("Connected to FTP server %s:%d", self.ftp_config.host, self.ftp_config.port)

            self._probe_capabilities()

        except (ftplib.error_perm, ftplib.error_temp) as e:
            self._connected = False
            self._ftp = None
            logger.error("FTP login failed: %s", e)
            raise PermissionError(f"FTP login failed: {e}") from e
        except TimeoutError as e:
            self._connected = False
            self._ftp = None
            logger.error("Connection timeout: %s", e)
            raise TimeoutError(f"Connection timeout: {e}") from e
        except OSError as e:
            self._connected = False
            self._ftp = None
            logger.error("Connection failed: %s", e)
            raise ConnectionError(f"Connection failed: {e}") from e

    def _probe_capabilities(self) -> None:
        """Check FEAT for MLSD/MLST support."""
        try:
            features = self._ftp.sendcmd("FEAT").upper().split()
        except ftplib.error_perm:
            # Server doesn't support FEAT
            features = []
        self._supports_mlst = "MLST" in features
        # RFC 3659 advertises MLSD through the MLST feature line
        self._supports_mlsd = self._supports_mlst or "MLSD" in features
        logger.debug(
            "Server capabilities - MLSD: %s, MLST: %s", self._supports_mlsd, self._supports_mlst
        )

    def disconnect(self) -> None:
        """Safely close the connection."""
        with self._lock:
            if self._ftp:
                try:
                    self._ftp.quit()
                    logger.debug("FTP connection closed gracefully")
                except (OSError, EOFError, ftplib.Error) as e:
                    logger.debug("FTP quit failed, forcing close: %s", e)
                    self._ftp.close()
            self._ftp = None
            self._connected = False

    def _normalize_path(self, path: str) -> str:
        """Ensure path has leading slash and uses forward slashes."""
        path = path.replace("\\", "/")
        if not path.startswith("/"):
            path = "/" + path
        return path

    def _run(self, operation: str, func, *args):
        """
        Execute func under the connection lock, translating errors.

        Raises:
            ConnectionError: If not connected or the connection dropped.
            FileNotFoundError, PermissionError, FileExistsError, OSError:
                Translated FTP replies.
        """
        with self._lock:
            if not self._connected or self._ftp is None:
                raise ConnectionError(f"{operation} failed: not connected")
            try:
                return func(*args)
            except ftplib.error_perm as e:
                raise self._translate_ftp_error(e) from e
            except (socket.timeout, TimeoutError) as e:
                raise TimeoutError(f"{operation} timed out") from e
            except (EOFError, ConnectionError) as e:
                self._connected = False
                raise ConnectionError(f"{operation} failed: connection lost") from e
            except (ftplib.error_temp, ftplib.error_reply, ftplib.error_proto) as e:
                raise OSError(f"{operation} failed: {e}") from e

    def _translate_ftp_error(self, error: ftplib.error_perm) -> Exception:
        """Translate FTP permanent errors to standard Python exceptions."""
        error_str = str(error).lower()
        error_code = str(error)[:3]

        if error_code == "550":
            if "exists" in error_str:
                return FileExistsError(str(error))
            if "permission" in error_str or "denied" in error_str:
                return PermissionError(str(error))
            if "not empty" in error_str:
                return OSError(str(error))
            return FileNotFoundError(str(error))
        if error_code in ("530", "553"):
            return PermissionError(str(error))
        return OSError(str(error))

    def list_dir(self, path: str) -> list[RemoteFile]:
        """
        List contents of a directory.

        Args:
            path: Absolute FTP path.

        Raises:
            FileNotFoundError: If path does not exist.
        """
        path = self._normalize_path(path)
        logger.debug("Listing directory: %s", path)
        return self._run(f"list_dir({path})", self._list_dir_internal, path)

    def _list_dir_internal(self, path: str) -> list[RemoteFile]:
        if self._supports_mlsd:
            results = self._list_dir_mlsd(path)
        else:
            results = self._list_dir_list(path)
        logger.debug("Listed %d entries in %s", len(results), path)
        return results

    def _list_dir_mlsd(self, path: str) -> list[RemoteFile]:
        results = []
        for name, facts in self._ftp.mlsd(path):
            entry_type = facts.get("type", "").lower()
            if name in (".", "..") or entry_type in ("cdir", "pdir"):
                continue
            is_dir = entry_type == "dir"
            results.append(
                RemoteFile(
                    name=name,
                    size=0 if is_dir else int(facts.get("size", 0)),
                    mtime=self._parse_mlsd_time(facts.get("modify", "")),
                    is_dir=is_dir,
                    path=join_path(path, name),
                )
            )
        return results

    def _parse_mlsd_time(self, time_str: str) -> datetime:
        """Parse MLSD modify time format (YYYYMMDDHHmmSS[.sss])."""
        if not time_str:
            return datetime.now()
        try:
            return datetime.strptime(time_str.split(".")[0], "%Y%m%d%H%M%S")
        except ValueError:
            logger.warning("Failed to parse MLSD time: %s", time_str)
            return datetime.now()

    def _list_dir_list(self, path: str) -> list[RemoteFile]:
        """List directory using LIST command (legacy, needs parsing)."""
        lines: list[str] = []
        self._ftp.cwd(path)
        self._ftp.retrlines("LIST", lines.append)

        results = []
        for line in lines:
            entry = self._parse_list_line(line)
            if entry and entry.name not in (".", ".."):
                entry.path = join_path(path, entry.name)
                results.append(entry)
        return results

    def _parse_list_line(self, line: str) -> RemoteFile | None:
        """
        Parse one LIST line in Unix or Windows (IIS) format.

        Unix:    drwxr-xr-x  2 user group 4096 Dec 10 12:34 name
        Windows: 12-10-20  12:34PM  <DIR>  name
        """
        line = line.strip()
        if not line:
            return None

        if line[0] in "dl-" and len(line.split(None, 1)[0]) >= 10:
            parts = line.split(None, 8)
            if len(parts) < 9:
                logger.warning("Failed to parse Unix LIST line: %s", line)
                return None
            is_dir = parts[0][0] == "d"
            name = parts[8]
            if parts[0][0] == "l" and " -> " in name:
                name = name.split(" -> ", 1)[0]
            try:
                size = 0 if is_dir else int(parts[4])
            except ValueError:
                logger.warning("Failed to parse Unix LIST line: %s", line)
                return None
            mtime = self._parse_unix_list_time(parts[5], parts[6], parts[7])
            return RemoteFile(name=name, size=size, mtime=mtime, is_dir=is_dir)

        parts = line.split(None, 3)
        if len(parts) == 4 and "-" in parts[0]:
            is_dir = parts[2].upper() == "<DIR>"
            try:
                size = 0 if is_dir else int(parts[2])
            except ValueError:
                logger.warning("Failed to parse Windows LIST line: %s", line)
                return None
            mtime = self._parse_windows_list_time(parts[0], parts[1])
            return RemoteFile(name=parts[3], size=size, mtime=mtime, is_dir=is_dir)

        logger.warning("Unknown LIST format: %s", line)
        return None

    def _parse_unix_list_time(self, month_str: str, day_str: str, time_or_year: str) -> datetime:
        """Parse 'Dec 10 12:34' (current year) or 'Dec 10 2020' (midnight)."""
        try:
            month = MONTHS[month_str.lower()]
            day = int(day_str)
            if ":" in time_or_year:
                hour, minute = map(int, time_or_year.split(":"))
                return datetime(datetime.now().year, month, day, hour, minute)
            return datetime(int(time_or_year), month, day)
        except (KeyError, ValueError):
            return datetime.now()

    def _parse_windows_list_time(self, date_str: str, time_str: str) -> datetime:
        """Parse MM-DD-YY HH:MMAM/PM."""
        try:
            month, day, year = map(int, date_str.split("-"))
            if year < 100:
                year += 2000 if year < 70 else 1900
            time_str = time_str.upper()
            is_pm = time_str.endswith("PM")
            hour, minute = map(int, time_str[:-2].split(":"))
            if is_pm and hour != 12:
                hour += 12
            elif not is_pm and hour == 12:
                hour = 0
            return datetime(year, month, day, hour, minute)
        except (ValueError, IndexError):
            return datetime.now()

    def tree(self, path: str) -> list[RemoteDir]:
        """Recursively list subdirectories of path, sorted by name."""
        path = self._normalize_path(path)
        logger.debug("Listing directory tree: %s", path)
        return self._run(f"tree({path})", self._tree_internal, path)

    def _tree_internal(self, path: str) -> list[RemoteDir]:
        dirs = sorted(
            (entry for entry in self._list_dir_internal(path) if entry.is_dir),
            key=lambda entry: entry.name,
        )
        return [
            RemoteDir(name=entry.name, path=entry.path, subdirectories=self._tree_internal(entry.path))
            for entry in dirs
        ]

    def get_file_info(self, path: str) -> RemoteFile:
        """
        Get metadata for a single file or directory.

        Raises:
            FileNotFoundError: If path does not exist.
        """
        path = self._normalize_path(path)
        logger.debug("Getting file info: %s", path)
        return self._run(f"get_file_info({path})", self._get_file_info_internal, path)

    def _get_file_info_internal(self, path: str) -> RemoteFile:
        if path.rstrip("/") == "":
            return RemoteFile(name="/", size=0, mtime=datetime.now(), is_dir=True, path="/")
        if self._supports_mlst:
            return self._get_file_info_mlst(path)

        parent, name = posixpath.split(path.rstrip("/"))
        for entry in self._list_dir_internal(parent or "/"):
            if entry.name == name:
                return entry
        raise FileNotFoundError(f"File not found: {path}")

    def _get_file_info_mlst(self, path: str) -> RemoteFile:
        # 250-Listing path
        #  type=file;size=1234;modify=20201210123456; filename
        # 250 End
        response = self._ftp.sendcmd(f"MLST {path}")
        for line in response.splitlines():
            if ";" not in line or "=" not in line:
                continue
            facts_str, _, name = line.strip().rpartition("; ")
            facts = {}
            for part in facts_str.split(";"):
                if "=" in part:
                    key, value = part.split("=", 1)
                    facts[key.lower()] = value
            is_dir = facts.get("type", "").lower() in ("dir", "cdir", "pdir")
            return RemoteFile(
                name=posixpath.basename(name.rstrip("/")) or posixpath.basename(path),
                size=0 if is_dir else int(facts.get("size", 0)),
                mtime=self._parse_mlsd_time(facts.get("modify", "")),
                is_dir=is_dir,
                path=path,
            )
        raise FileNotFoundError(f"Could not parse MLST response for {path}")

    def is_file(self, path: str) -> bool:
        try:
            return not self.get_file_info(path).is_dir
        except FileNotFoundError:
            return False

    def is_dir(self, path: str) -> bool:
        try:
            return self.get_file_info(path).is_dir
        except FileNotFoundError:
            return False

    def read_file(self, path: str) -> bytes:
        """Download a whole file."""
        path = self._normalize_path(path)
        logger.debug("Reading file: %s", path)
        return self._run(f"read_file({path})", self._read_internal, path)

    def _read_internal(self, path: str) -> bytes:
        buffer = BytesIO()
        self._ftp.retrbinary(f"RETR {path}", buffer.write)
        return buffer.getvalue()

    def put_file(self, path: str, local_path: str | Path) -> None:
        """Upload a local file, replacing the remote file."""
        path = self._normalize_path(path)
        logger.debug("Uploading %s -> %s", local_path, path)
        with open(local_path, "rb") as f:
            self._run(f"put_file({path})", self._ftp_store, path, f)

    def _ftp_store(self, path: str, stream) -> None:
        self._ftp.storbinary(f"STOR {path}", stream)

    def chmod(self, path: str, mode: int) -> None:
        path = self._normalize_path(path)
        logger.debug("Changing mode of %s to %o", path, mode)
        self._run(f"chmod({path})", lambda: self._ftp.sendcmd(f"SITE CHMOD {mode:o} {path}"))

    def create_dir(self, path: str) -> None:
        """Create a single directory; the parent must exist."""
        path = self._normalize_path(path)
        logger.debug("Creating directory: %s", path)
        self._run(f"create_dir({path})", lambda: self._ftp.mkd(path))

    def delete_file(self, path: str) -> None:
        path = self._normalize_path(path)
        logger.debug("Deleting file: %s", path)
        self._run(f"delete_file({path})", lambda: self._ftp.delete(path))

    def delete_dir(self, path: str) -> None:
        """Delete a directory and everything below it."""
        path = self._normalize_path(path)
        logger.debug("Deleting directory tree: %s", path)
        self._run(f"delete_dir({path})", self._delete_tree, path)

    def _delete_tree(self, path: str) -> None:
        for entry in self._list_dir_internal(path):
            if entry.is_dir:
                self._delete_tree(entry.path)
            else:
                self._ftp.delete(entry.path)
        self._ftp.rmd(path)

    def rename(self, old_path: str, new_path: str) -> None:
        """Rename or move a file/directory."""
        old_path = self._normalize_path(old_path)
        new_path = self._normalize_path(new_path)
        logger.debug("Renaming: %s -> %s", old_path, new_path)
        self._run(f"rename({old_path}, {new_path})", lambda: self._ftp.rename(old_path, new_path))

    def copy_file(self, src: str, dst: str) -> None:
        """Copy a file server-side by downloading and re-uploading it."""
        src = self._normalize_path(src)
        dst = self._normalize_path(dst)
        logger.debug("Copying file: %s -> %s", src, dst)
        self._run(f"copy_file({src}, {dst})", self._copy_file_internal, src, dst)

    def _copy_file_internal(self, src: str, dst: str) -> None:
        self._ftp_store(dst, BytesIO(self._read_internal(src)))

    def copy_dir(self, src: str, dst: str) -> None:
        """Recursively copy a directory."""
        src = self._normalize_path(src)
        dst = self._normalize_path(dst)
        logger.debug("Copying directory: %s -> %s", src, dst)
        self._run(f"copy_dir({src}, {dst})", self._copy_tree, src, dst)

    def _copy_tree(self, src: str, dst: str) -> None:
        self._ftp.mkd(dst)
        for entry in self._list_dir_internal(src):
            target = join_path(dst, entry.name)
            if entry.is_dir:
                self._copy_tree(entry.path, target)
            else:
                self._copy_file_internal(entry.path, target)
