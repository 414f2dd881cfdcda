"""Remote store connection configuration.

Reads backend settings from CLI args, environment variables, .env files,
and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    BREW_SYNC_BACKEND: "webdav" or "s3" (optional, default: webdav)
    BREW_SYNC_URL: WebDAV server URL (required for webdav)
    BREW_SYNC_USERNAME: WebDAV username (required for webdav)
    BREW_SYNC_PASSWORD: WebDAV password (required for webdav)
    BREW_SYNC_REMOTE_ROOT: Directory/prefix under which documents live
        (optional, default: brew-guide)
    BREW_SYNC_BUCKET: S3 bucket name (required for s3)
    BREW_SYNC_REGION: S3 region (optional, default: us-east-1)
    BREW_SYNC_ENDPOINT: Custom S3 endpoint for MinIO/OSS/COS (optional)
    BREW_SYNC_ACCESS_KEY_ID / BREW_SYNC_SECRET_ACCESS_KEY: S3 credentials
        (optional, boto3 default credential chain otherwise)
    BREW_SYNC_INSECURE: Skip SSL verification (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

BACKENDS = ("webdav", "s3")


@dataclass
class RemoteConfig:
    backend: str = "webdav"
    url: str = ""
    username: str = ""
    password: str = ""
    remote_root: str = "brew-guide"
    bucket: str = ""
    region: str = "us-east-1"
    endpoint: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    insecure: bool = False
    connect_timeout: float = 10.0
    read_timeout: float = 60.0


def validate_config(config: RemoteConfig) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: RemoteConfig instance to validate.

    Raises:
        ValueError: If the backend is unknown, the URL is malformed or
            required credentials are empty.
    """
    config.backend = config.backend.strip().lower()
    if config.backend not in BACKENDS:
        raise ValueError(
            f"Unknown backend '{config.backend}': must be one of {', '.join(BACKENDS)}"
        )

    config.remote_root = config.remote_root.strip().strip("/")

    if config.backend == "webdav":
        config.url = config.url.strip()
        if not config.url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid WebDAV URL '{config.url}': must start with http:// or https://"
            )
        if not urlparse(config.url).hostname:
            raise ValueError(
                f"Invalid WebDAV URL '{config.url}': URL must include a hostname"
            )
        config.url = config.url.removesuffix("/")

        if not config.username.strip():
            raise ValueError(
                "WebDAV username cannot be empty. Set BREW_SYNC_USERNAME environment variable."
            )
        if not config.password.strip():
            raise ValueError(
                "WebDAV password cannot be empty. Set BREW_SYNC_PASSWORD environment variable."
            )
    else:
        if not config.bucket.strip():
            raise ValueError(
                "S3 bucket cannot be empty. Set BREW_SYNC_BUCKET environment variable."
            )
        if config.endpoint and not config.endpoint.startswith(
            ("http://", "https://")
        ):
            raise ValueError(
                f"Invalid S3 endpoint '{config.endpoint}': must start with http:// or https://"
            )
        if bool(config.access_key_id) != bool(config.secret_access_key):
            raise ValueError(
                "S3 access key id and secret access key must be set together."
            )

    if config.connect_timeout <= 0 or config.read_timeout <= 0:
        raise ValueError("Timeouts must be positive numbers of seconds.")

    if config.insecure:
        logger.warning(
            "WARNING: SSL verification disabled (insecure=True). Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    cli_overrides: dict | None = None,
    yaml_fallbacks: dict | None = None,
) -> RemoteConfig:
    """Load remote configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        cli_overrides: Values from CLI arguments keyed by ``RemoteConfig``
            field name.  ``None`` values are ignored.
        yaml_fallbacks: Dict of values from the YAML ``remote`` section.

    Returns:
        Validated RemoteConfig instance.

    Raises:
        ValueError: If required settings are missing or invalid after
            checking all sources.
    """
    cli = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    fb = {k: v for k, v in (yaml_fallbacks or {}).items() if v is not None}
    defaults = RemoteConfig()

    def pick(field: str, env_key: str):
        if field in cli and cli[field] != "":
            return cli[field]
        env_val = os.getenv(env_key)
        if env_val:
            return env_val
        if field in fb and fb[field] != "":
            return fb[field]
        return getattr(defaults, field)

    # --- Boolean: CLI flag > env > YAML > default ---
    if cli.get("insecure"):
        final_insecure = True
    else:
        env_insecure = _get_bool_env("BREW_SYNC_INSECURE")
        if env_insecure is not None:
            final_insecure = env_insecure
        else:
            final_insecure = bool(fb.get("insecure", False))

    # --- Numeric: env > YAML > default ---
    timeouts = {}
    for field, env_key in (
        ("connect_timeout", "BREW_SYNC_CONNECT_TIMEOUT"),
        ("read_timeout", "BREW_SYNC_READ_TIMEOUT"),
    ):
        raw = os.getenv(env_key)
        if raw is not None:
            try:
                timeouts[field] = float(raw)
            except ValueError:
                raise ValueError(
                    f"Invalid {env_key} '{raw}': must be a number of seconds"
                ) from None
        else:
            timeouts[field] = float(fb.get(field, getattr(defaults, field)))

    config = RemoteConfig(
        backend=str(pick("backend", "BREW_SYNC_BACKEND")),
        url=str(pick("url", "BREW_SYNC_URL")),
        username=str(pick("username", "BREW_SYNC_USERNAME")),
        password=str(pick("password", "BREW_SYNC_PASSWORD")),
        remote_root=str(pick("remote_root", "BREW_SYNC_REMOTE_ROOT")),
        bucket=str(pick("bucket", "BREW_SYNC_BUCKET")),
        region=str(pick("region", "BREW_SYNC_REGION")),
        endpoint=str(pick("endpoint", "BREW_SYNC_ENDPOINT")),
        access_key_id=str(pick("access_key_id", "BREW_SYNC_ACCESS_KEY_ID")),
        secret_access_key=str(
            pick("secret_access_key", "BREW_SYNC_SECRET_ACCESS_KEY")
        ),
        insecure=final_insecure,
        connect_timeout=timeouts["connect_timeout"],
        read_timeout=timeouts["read_timeout"],
    )

    validate_config(config)

    return config
