"""Configuration management for svnws."""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List, Dict

from dotenv import load_dotenv

from .errors import ConfigurationError
from .platform import get_platform_specific_defaults, normalize_path, path_to_file_url

load_dotenv()  # Load .env file if it exists

DEFAULT_REPOSITORY_NAME = "repo"


@dataclass(frozen=True)
class Repository:
    """A configured backend repository. Immutable once loaded."""
    name: str
    root_url: str
    local_path: Optional[Path] = None

    @property
    def is_local(self) -> bool:
        """True for ``file://`` repositories this tool can create itself."""
        return self.local_path is not None


def repository_from_url(name: str, url: str) -> Repository:
    """Build a Repository, deriving the local path for ``file://`` URLs."""
    url = url.strip().rstrip("/")
    local_path = None
    if url.startswith("file://"):
        raw = url[len("file://"):]
        # file:///C:/repos/x -> C:/repos/x
        if len(raw) > 2 and raw[0] == "/" and raw[2] == ":":
            raw = raw[1:]
        local_path = Path(raw)
    return Repository(name=name, root_url=url, local_path=local_path)


def parse_repositories(value: str) -> Dict[str, Repository]:
    """Parse ``name=url;name=url`` into repositories keyed by name."""
    repositories: Dict[str, Repository] = {}
    for item in value.split(";"):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"Repository entry must be 'name=url': {item!r}")
        name, url = item.split("=", 1)
        name, url = name.strip(), url.strip()
        if not name or not url:
            raise ValueError(f"Repository entry must be 'name=url': {item!r}")
        if name in repositories:
            raise ValueError(f"Duplicate repository name: {name}")
        repositories[name] = repository_from_url(name, url)
    return repositories


@dataclass
class Config:
    """Configuration class for svnws with validation and defaults."""

    # Storage
    home_dir: Path = field(default_factory=lambda: Path.home() / ".svnws")
    workspace_root: Optional[Path] = None

    # Repositories
    repositories: Dict[str, Repository] = field(default_factory=dict)
    default_repository: Optional[str] = None
    auto_create_repository: bool = True

    # Subversion client
    svn_executable: str = "svn"
    svnadmin_executable: str = "svnadmin"
    svn_username: Optional[str] = None
    svn_password: Optional[str] = None
    command_timeout: float = 300.0

    # Locking
    lock_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.home_dir = normalize_path(self.home_dir)
        if self.workspace_root is None:
            self.workspace_root = self.home_dir / "workspaces"
        else:
            self.workspace_root = normalize_path(self.workspace_root)

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        self.log_level = self.log_level.upper()
        if self.log_level not in valid_log_levels:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")

        if self.command_timeout <= 0:
            raise ValueError("command_timeout must be positive")

        if self.lock_timeout <= 0:
            raise ValueError("lock_timeout must be positive")

        if self.svn_password and not self.svn_username:
            raise ValueError("svn_password requires svn_username")

        if not self.repositories:
            local = self.repos_dir / DEFAULT_REPOSITORY_NAME
            self.repositories = {
                DEFAULT_REPOSITORY_NAME: Repository(
                    name=DEFAULT_REPOSITORY_NAME,
                    root_url=path_to_file_url(local),
                    local_path=local
                )
            }

        if self.default_repository is None:
            self.default_repository = next(iter(self.repositories))
        elif self.default_repository not in self.repositories:
            raise ValueError(
                f"Default repository '{self.default_repository}' is not configured. "
                f"Known repositories: {sorted(self.repositories)}"
            )

    @property
    def state_file(self) -> Path:
        """Persisted workspace state document."""
        return self.home_dir / "state.json"

    @property
    def lock_dir(self) -> Path:
        """Directory for file locks."""
        return self.home_dir / "locks"

    @property
    def repos_dir(self) -> Path:
        """Directory holding auto-created local repositories."""
        return self.home_dir / "repos"

    @property
    def has_credentials(self) -> bool:
        return bool(self.svn_username)

    def get_repository(self, name: Optional[str] = None) -> Repository:
        """Look up a configured repository, falling back to the default."""
        key = name or self.default_repository
        try:
            return self.repositories[key]
        except KeyError:
            raise ConfigurationError(
                f"Unknown repository '{key}'. Known repositories: {', '.join(sorted(self.repositories))}",
                context={"repository": key}
            ) from None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_configuration() -> Config:
    """Load configuration from environment variables with platform-specific defaults."""
    try:
        platform_defaults = get_platform_specific_defaults()

        workspace_root = os.getenv("SVNWS_WORKSPACE_ROOT")
        repositories_value = os.getenv("SVNWS_REPOSITORIES", "")

        config = Config(
            home_dir=Path(os.getenv("SVNWS_HOME", str(platform_defaults['home_dir']))),
            workspace_root=Path(workspace_root) if workspace_root else None,
            repositories=parse_repositories(repositories_value),
            default_repository=os.getenv("SVNWS_DEFAULT_REPOSITORY") or None,
            auto_create_repository=_env_bool("SVNWS_AUTO_CREATE_REPOSITORY", True),
            svn_executable=os.getenv("SVNWS_SVN_EXECUTABLE", platform_defaults['svn_executable']),
            svnadmin_executable=os.getenv("SVNWS_SVNADMIN_EXECUTABLE", platform_defaults['svnadmin_executable']),
            svn_username=os.getenv("SVNWS_SVN_USERNAME") or None,
            svn_password=os.getenv("SVNWS_SVN_PASSWORD") or None,
            command_timeout=float(os.getenv("SVNWS_COMMAND_TIMEOUT", str(platform_defaults['command_timeout']))),
            lock_timeout=float(os.getenv("SVNWS_LOCK_TIMEOUT", str(platform_defaults['lock_timeout']))),
            log_level=os.getenv("SVNWS_LOG_LEVEL", platform_defaults['log_level']).upper()
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Configuration error: {e}") from e

    logging.getLogger('svnws.config').debug(
        f"Loaded configuration: home={config.home_dir}, repositories={sorted(config.repositories)}"
    )
    return config


def validate_configuration(config: Config) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    from .platform import validate_svn_availability

    errors = []

    for directory in (config.home_dir, config.workspace_root):
        try:
            directory.mkdir(parents=True, exist_ok=True)
            test_file = directory / ".test_write"
            test_file.write_text("test")
            test_file.unlink()
        except PermissionError:
            errors.append(f"ERROR: No write permission for directory: {directory}")
        except OSError as e:
            errors.append(f"ERROR: Cannot access directory {directory}: {e}")

    available, message = validate_svn_availability(config.svn_executable)
    if not available:
        errors.append(f"ERROR: Subversion client unavailable: {message}")

    for repository in config.repositories.values():
        if not repository.root_url.startswith(("file://", "svn://", "svn+ssh://", "http://", "https://")):
            errors.append(f"WARNING: Repository URL may be invalid: {repository.name}={repository.root_url}")
        if repository.is_local and not repository.local_path.exists() and not config.auto_create_repository:
            errors.append(
                f"WARNING: Local repository {repository.local_path} does not exist "
                f"and SVNWS_AUTO_CREATE_REPOSITORY is off"
            )

    if config.svn_password:
        errors.append("WARNING: SVN password is read from the environment; keep your .env file private")

    if config.command_timeout < 10:
        errors.append("WARNING: Low command_timeout may interrupt large checkouts")

    return errors
