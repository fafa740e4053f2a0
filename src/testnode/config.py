import os
from typing import Optional

from dotenv import load_dotenv


def _env_bool(key: str, default: str = "false") -> bool:
    return os.getenv(key, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Loads and manages configuration from environment variables."""

    load_dotenv()

    # Proxmox API access; API_TOKEN has the form "user@realm!tokenname=secret"
    PROXMOX_HOST = os.getenv("PROXMOX_HOST", "pve")
    API_TOKEN = os.getenv("API_TOKEN")
    VERIFY_SSL = _env_bool("VERIFY_SSL")
    PROXMOX_CLONE_TIMEOUT = int(os.getenv("PROXMOX_CLONE_TIMEOUT", "300"))

    # Local privileged execution (network scan) and target credentials
    LOCAL_SUDO_PASS: Optional[str] = os.getenv("LOCAL_SUDO_PASS")
    DEFAULT_SSH_PASS = os.getenv("DEFAULT_SSH_PASS", "ubuntu")

    # External tools
    KNIFE_BIN = os.getenv("KNIFE_BIN", "knife")
    KNIFE_CONFIG: Optional[str] = os.getenv("KNIFE_CONFIG") or None
    NMAP_BIN = os.getenv("NMAP_BIN", "nmap")

    # IP discovery
    SCAN_SUBNET = os.getenv("SCAN_SUBNET", "153.15.248.0/21")
    SCAN_ATTEMPTS = int(os.getenv("SCAN_ATTEMPTS", "20"))
    SCAN_TIMEOUT = int(os.getenv("SCAN_TIMEOUT", "300"))

    # SSH readiness before bootstrap (30 x 15s ~ 7.5 minutes)
    PORT_TIMEOUT = float(os.getenv("PORT_TIMEOUT", "10"))
    SSH_WAIT_ATTEMPTS = int(os.getenv("SSH_WAIT_ATTEMPTS", "30"))
    SSH_WAIT_INTERVAL = float(os.getenv("SSH_WAIT_INTERVAL", "15"))

    # VM health polling (90 x 10s = 15 minutes)
    HEALTH_POLL_INTERVAL = float(os.getenv("HEALTH_POLL_INTERVAL", "10"))
    HEALTH_POLL_ATTEMPTS = int(os.getenv("HEALTH_POLL_ATTEMPTS", "90"))

    # Template instantiation retries
    CREATE_MAX_RETRIES = int(os.getenv("CREATE_MAX_RETRIES", "5"))
    CREATE_BACKOFF_BASE = float(os.getenv("CREATE_BACKOFF_BASE", "2.0"))
    CREATE_BACKOFF_MAX = float(os.getenv("CREATE_BACKOFF_MAX", "60.0"))

    @staticmethod
    def parse_api_token(token: Optional[str]) -> tuple[str, str, str]:
        """Split API_TOKEN into (user, token_name, token_value).

        Raises:
            ValueError: If the token is missing or malformed
        """
        if not token:
            raise ValueError("API_TOKEN environment variable is not set")
        try:
            user_token, token_value = token.split("=", 1)
            user, token_name = user_token.split("!", 1)
        except ValueError:
            raise ValueError("API_TOKEN must look like 'user@realm!tokenname=secret'")
        return user, token_name, token_value

    @staticmethod
    def backoff_delay(attempt: int) -> float:
        """Exponential backoff delay before retry number `attempt` (1-based)."""
        delay = Config.CREATE_BACKOFF_BASE * (2 ** (attempt - 1))
        return min(delay, Config.CREATE_BACKOFF_MAX)
