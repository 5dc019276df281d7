import configparser
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError

TRUE_VALUES = ("true", "1", "yes")
PROTOCOLS = ("ftp", "ftps", "sftp")


@dataclass
class FTPConfig:
    host: str
    port: int = 21
    username: str | None = None  # None means anonymous
    password: str | None = None
    passive_mode: bool = True
    encoding: str = "utf-8"
    secure: bool = False  # FTPS (FTP over TLS)


@dataclass
class SSHConfig:
    host: str
    port: int = 22
    username: str | None = None
    password: str | None = None
    key_file: str | None = None  # Path to SSH private key
    key_passphrase: str | None = None  # Passphrase for encrypted keys
    use_agent: bool = True  # Try SSH agent for auth


@dataclass
class StorageConfig:
    base_path: str = "/"
    base_url: str = ""
    file_mode: int = 0o644
    dir_mode: int = 0o755
    overwrite_files: bool = True
    normalize_names: bool = False


@dataclass
class CacheConfig:
    directory: str = ""
    ttl_seconds: int = 3600


@dataclass
class ConnectionConfig:
    timeout_seconds: int = 90


@dataclass
class LogConfig:
    level: str = "INFO"
    file: str = ""
    console: bool = True


@dataclass
class AppConfig:
    ftp: FTPConfig
    cache: CacheConfig
    storage: StorageConfig = field(default_factory=StorageConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    logging: LogConfig = field(default_factory=LogConfig)
    protocol: str = "ftp"  # "ftp" or "sftp"; FTPS is ftp with secure=True
    ssh: SSHConfig | None = None


def normalize_base_path(value: str) -> str:
    """Normalize a base path to "/a/b" form, "/" for the root."""
    parts = [part for part in value.replace("\\", "/").split("/") if part]
    return "/" + "/".join(parts)


def _parse_int(section: str, key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValueError(
            f"Invalid {key} value in [{section}]: '{value}' - must be an integer"
        ) from None


def _parse_mode(section: str, key: str, value: str | int) -> int:
    """Parse a permission mode written as octal ("644", "0o644", "0644")."""
    if isinstance(value, int):
        return value
    text = value.strip().lower()
    if text.startswith("0o"):
        text = text[2:]
    try:
        return int(text, 8)
    except ValueError:
        raise ValueError(
            f"Invalid {key} value in [{section}]: '{value}' - must be an octal mode"
        ) from None


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


def load_config(config_path: str | None = None, **cli_args) -> AppConfig:
    """
    Load configuration from an INI file and/or CLI arguments.
    CLI arguments take precedence over config file.

    Args:
        config_path: Path to the INI configuration file.
        **cli_args: Key-value pairs from command line arguments.

    Returns:
        AppConfig: The populated configuration object.

    Raises:
        FileNotFoundError: If config_path is provided but does not exist.
        ValueError: If a value cannot be parsed or the protocol is unknown.
        ConfigurationError: If required fields (host, cache directory) are
            missing or the cache directory does not exist.
    """
    protocol = "ftp"
    ftp_config = {
        "host": None,
        "port": None,
        "username": None,
        "password": None,
        "passive_mode": True,
        "encoding": "utf-8",
        "secure": False,
    }
    ssh_config = {
        "host": None,
        "port": None,
        "username": None,
        "password": None,
        "key_file": None,
        "key_passphrase": None,
        "use_agent": True,
    }
    storage_config = {
        "base_path": "/",
        "base_url": "",
        "file_mode": 0o644,
        "dir_mode": 0o755,
        "overwrite_files": True,
        "normalize_names": False,
    }
    cache_config = {"directory": None, "ttl_seconds": 3600}
    connection_config = {"timeout_seconds": 90}
    log_config = {"level": "INFO", "file": "", "console": True}

    if config_path is not None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        parser = configparser.ConfigParser()
        parser.read(config_file, encoding="utf-8")

        if parser.has_section("general") and parser["general"].get("protocol"):
            protocol = parser["general"]["protocol"].lower()

        if parser.has_section("ftp"):
            section = parser["ftp"]
            for key in ("host", "username", "password", "encoding"):
                if section.get(key):
                    ftp_config[key] = section.get(key)
            if section.get("port"):
                ftp_config["port"] = _parse_int("ftp", "port", section.get("port"))
            if section.get("passive_mode"):
                ftp_config["passive_mode"] = _parse_bool(section.get("passive_mode"))
            if section.get("secure"):
                ftp_config["secure"] = _parse_bool(section.get("secure"))

        if parser.has_section("ssh"):
            section = parser["ssh"]
            for key in ("host", "username", "password", "key_file", "key_passphrase"):
                if section.get(key):
                    ssh_config[key] = section.get(key)
            if section.get("port"):
                ssh_config["port"] = _parse_int("ssh", "port", section.get("port"))
            if section.get("use_agent"):
                ssh_config["use_agent"] = _parse_bool(section.get("use_agent"))

        if parser.has_section("storage"):
            section = parser["storage"]
            if section.get("base_path"):
                storage_config["base_path"] = section.get("base_path")
            if section.get("base_url"):
                storage_config["base_url"] = section.get("base_url")
            for key in ("file_mode", "dir_mode"):
                if section.get(key):
                    storage_config[key] = _parse_mode("storage", key, section.get(key))
            for key in ("overwrite_files", "normalize_names"):
                if section.get(key):
                    storage_config[key] = _parse_bool(section.get(key))

        if parser.has_section("cache"):
            section = parser["cache"]
            if section.get("directory"):
                cache_config["directory"] = section.get("directory")
            if section.get("ttl_seconds"):
                cache_config["ttl_seconds"] = _parse_int(
                    "cache", "ttl_seconds", section.get("ttl_seconds")
                )

        if parser.has_section("connection"):
            section = parser["connection"]
            if section.get("timeout_seconds"):
                connection_config["timeout_seconds"] = _parse_int(
                    "connection", "timeout_seconds", section.get("timeout_seconds")
                )

        if parser.has_section("logging"):
            section = parser["logging"]
            if section.get("level"):
                log_config["level"] = section.get("level")
            if section.get("file"):
                log_config["file"] = section.get("file")
            if section.get("console"):
                log_config["console"] = _parse_bool(section.get("console"))

    # Override with CLI arguments (cli_args take precedence)
    if cli_args.get("protocol") is not None:
        protocol = cli_args["protocol"].lower()
    if cli_args.get("secure"):
        protocol = "ftps"
    if protocol not in PROTOCOLS:
        raise ValueError(f"Unsupported protocol: {protocol}. Must be one of {', '.join(PROTOCOLS)}")

    remote_config = ssh_config if protocol == "sftp" else ftp_config
    for key in ("host", "username", "password"):
        if cli_args.get(key) is not None:
            remote_config[key] = cli_args[key] or None
    if cli_args.get("port") is not None:
        remote_config["port"] = int(cli_args["port"])
    if cli_args.get("key_file") is not None:
        ssh_config["key_file"] = cli_args["key_file"]
    if cli_args.get("key_passphrase") is not None:
        ssh_config["key_passphrase"] = cli_args["key_passphrase"]
    if cli_args.get("base_path") is not None:
        storage_config["base_path"] = cli_args["base_path"]
    if cli_args.get("base_url") is not None:
        storage_config["base_url"] = cli_args["base_url"]
    if cli_args.get("overwrite_files") is not None:
        storage_config["overwrite_files"] = bool(cli_args["overwrite_files"])
    if cli_args.get("normalize_names") is not None:
        storage_config["normalize_names"] = bool(cli_args["normalize_names"])
    if cli_args.get("cache_dir") is not None:
        cache_config["directory"] = cli_args["cache_dir"]
    if cli_args.get("ttl_seconds") is not None:
        cache_config["ttl_seconds"] = int(cli_args["ttl_seconds"])
    if cli_args.get("timeout") is not None:
        connection_config["timeout_seconds"] = int(cli_args["timeout"])
    if cli_args.get("debug"):
        log_config["level"] = "DEBUG"
        log_config["console"] = True

    # Validate required fields
    missing_fields = []
    if not remote_config["host"]:
        missing_fields.append("host")
    if not cache_config["directory"]:
        missing_fields.append("cache directory")
    if missing_fields:
        raise ConfigurationError(f"Missing required configuration fields: {', '.join(missing_fields)}")

    if not Path(cache_config["directory"]).is_dir():
        raise ConfigurationError(f'not found directory "{cache_config["directory"]}"')

    if protocol == "ftps":
        ftp_config["secure"] = True
        protocol = "ftp"

    ssh_obj = None
    if protocol == "sftp":
        ssh_obj = SSHConfig(
            host=ssh_config["host"],
            port=ssh_config["port"] or 22,
            username=ssh_config["username"],
            password=ssh_config["password"],
            key_file=ssh_config["key_file"],
            key_passphrase=ssh_config["key_passphrase"],
            use_agent=ssh_config["use_agent"],
        )

    return AppConfig(
        ftp=FTPConfig(
            host=ftp_config["host"] or "",
            port=ftp_config["port"] or 21,
            username=ftp_config["username"],
            password=ftp_config["password"],
            passive_mode=ftp_config["passive_mode"],
            encoding=ftp_config["encoding"],
            secure=ftp_config["secure"],
        ),
        cache=CacheConfig(
            directory=cache_config["directory"],
            ttl_seconds=cache_config["ttl_seconds"],
        ),
        storage=StorageConfig(
            base_path=normalize_base_path(storage_config["base_path"]),
            base_url=storage_config["base_url"],
            file_mode=storage_config["file_mode"],
            dir_mode=storage_config["dir_mode"],
            overwrite_files=storage_config["overwrite_files"],
            normalize_names=storage_config["normalize_names"],
        ),
        connection=ConnectionConfig(timeout_seconds=connection_config["timeout_seconds"]),
        logging=LogConfig(
            level=log_config["level"],
            file=log_config["file"],
            console=log_config["console"],
        ),
        protocol=protocol,
        ssh=ssh_obj,
    )
