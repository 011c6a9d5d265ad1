"""Configuration handling for gemini_prefork."""

from dataclasses import dataclass
from pathlib import Path
import yaml


@dataclass(frozen=True)
class Config:
    """Configuration for the server, the prefork supervisor and the client.

    Established once at process start and passed explicitly to the
    components that need it.

    Attributes:
        host: Address the server binds to.
        port: Port the server binds to.
        cert_file: Server certificate chain (PEM).
        key_file: Server private key (PEM).
        root_directory: Directory served by the static file handler.
        index_file: File served for directory requests, if present.
        workers: Number of prefork worker processes.
        poll_interval: Seconds between reap checks in the master.
        propagate_shutdown: Terminate workers when the master stops.
        reuse_port: Bind with SO_REUSEPORT (forced on for prefork workers).
        max_redirects: Redirects the client follows before failing.
        client_cert_file: Client certificate presented by the client (PEM).
        client_key_file: Private key for client_cert_file (PEM).
    """

    host: str = "0.0.0.0"
    port: int = 1965
    cert_file: str = "cert.pem"
    key_file: str = "key.pem"
    root_directory: str = "~/gemini-content"
    index_file: str = "index.gmi"
    workers: int = 4
    poll_interval: float = 0.1
    propagate_shutdown: bool = True
    reuse_port: bool = False
    max_redirects: int = 5
    client_cert_file: str | None = None
    client_key_file: str | None = None

    def get_root_path(self) -> Path:
        """Get root directory as expanded Path object."""
        return Path(self.root_directory).expanduser()

    def client_cert(self) -> tuple[str, str] | None:
        """The (cert, key) pair for the client, or None if not configured."""
        if self.client_cert_file and self.client_key_file:
            return self.client_cert_file, self.client_key_file
        return None


def load_config(path: str | Path) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Config object with loaded values.

    Raises:
        FileNotFoundError: If config file doesn't exist.
    """
    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    # Extract sections
    server = data.get("server") or {}
    prefork = data.get("prefork") or {}
    client = data.get("client") or {}

    return Config(
        host=server.get("host", Config.host),
        port=server.get("port", Config.port),
        cert_file=server.get("cert_file", Config.cert_file),
        key_file=server.get("key_file", Config.key_file),
        root_directory=server.get("root_directory", Config.root_directory),
        index_file=server.get("index_file", Config.index_file),
        reuse_port=server.get("reuse_port", Config.reuse_port),
        workers=prefork.get("workers", Config.workers),
        poll_interval=prefork.get("poll_interval", Config.poll_interval),
        propagate_shutdown=prefork.get("propagate_shutdown", Config.propagate_shutdown),
        max_redirects=client.get("max_redirects", Config.max_redirects),
        client_cert_file=client.get("cert_file", Config.client_cert_file),
        client_key_file=client.get("key_file", Config.client_key_file),
    )
