"""Configuration loading from YAML and environment.

Secrets (host token, SMTP password) are taken from environment variables or
from files (Docker secrets). Never put real tokens in config files committed
to the repo.

Every section is frozen: the AppConfig built by load_config is created once
at startup and shared, read-only, by every component.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from mlbridge.errors import ConfigurationError


def _read_secret(env_key: str, file_env_key: str) -> str | None:
    """Read secret from env var or from file path in env (e.g. Docker
    secrets)."""
    value = _current_env.get(env_key)
    if value:
        return value.strip()
    file_path = _current_env.get(file_env_key)
    if file_path:
        return Path(file_path).read_text().strip()
    return None


# Injected by load_config so validators can read env/file
_current_env: dict[str, str] = {}


class BotConfig(BaseSettings):
    """Bot identity used as the mail sender and storage committer."""

    model_config = SettingsConfigDict(env_prefix="BOT_", extra="ignore", frozen=True)

    name: str = Field(default="mlbridge", description="Sender display name for bot-authored mail")
    email: str = Field(default="", description="Sender address for every outgoing mail")
    username: str | None = Field(default=None, description="Bot login on the review host (own comments are skipped)")
    domain: str = Field(default="", description="Domain for Message-Id values; defaults to the email domain")

    @property
    def message_domain(self) -> str:
        """Domain part used when building deterministic Message-Id values."""
        if self.domain:
            return self.domain
        return self.email.partition("@")[2] or "localhost"


class RepositoryConfig(BaseSettings):
    """Source repository whose pull requests are bridged."""

    model_config = SettingsConfigDict(env_prefix="REPOSITORY_", extra="ignore", frozen=True)

    name: str = Field(default="owner/repo", description="Repository full name, e.g. openjdk/jdk")
    url: str = Field(default="", description="Clone URL")
    web_url: str = Field(default="", description="Browsable URL of the repository")
    local_dir: str = Field(default=".mlbridge/source", description="Working clone for diff and merge-base queries")


class GitHubConfig(BaseSettings):
    """GitHub API settings."""

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore", frozen=True)

    token: str | None = Field(default=None, description="PAT or app token; use env or secret file")
    api_url: str = Field(default="https://api.github.com", description="API base URL")


class ArchiveConfig(BaseSettings):
    """Git repository holding one mbox per pull request."""

    model_config = SettingsConfigDict(env_prefix="ARCHIVE_", extra="ignore", frozen=True)

    url: str = Field(default="", description="Archive repository URL")
    ref: str = Field(default="master", description="Branch the mbox files are pushed to")
    local_dir: str = Field(default=".mlbridge/archive", description="Local clone of the archive")


class MailingListConfig(BaseModel):
    """A mailing list and the labels that route a pull request to it.

    An empty label set matches every pull request.
    """

    model_config = {"frozen": True}

    address: str
    labels: list[str] = Field(default_factory=list)


class MailConfig(BaseSettings):
    """Outgoing mail settings."""

    model_config = SettingsConfigDict(env_prefix="MAIL_", extra="ignore", frozen=True)

    smtp_host: str = Field(default="localhost", description="SMTP server")
    smtp_port: int = Field(default=25, ge=1, le=65535, description="SMTP port")
    smtp_user: str | None = Field(default=None, description="SMTP login")
    smtp_password: str | None = Field(default=None, description="SMTP password; prefer env or secret file")
    lists: list[MailingListConfig] = Field(default_factory=list, description="Mailing lists and label filters")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra static headers on every mail")
    repo_in_subject: bool = Field(default=False, description="Prefix subjects with [repo]")
    branch_in_subject: bool = Field(default=False, description="Prefix subjects with [branch]")


class CommentsConfig(BaseSettings):
    """Which comments are bridged and what marks a pull request ready."""

    model_config = SettingsConfigDict(env_prefix="COMMENTS_", extra="ignore", frozen=True)

    ignored_users: list[str] = Field(default_factory=list, description="Logins whose comments are never bridged")
    ignored_patterns: list[str] = Field(default_factory=list, description="Regexes of comments never bridged")
    ready_labels: list[str] = Field(default_factory=list, description="Labels that mark a PR ready for review")
    ready_comments: dict[str, str] = Field(
        default_factory=dict,
        description="Login -> regex; a matching comment by that login marks a PR ready",
    )
    hidden_marker: str = Field(
        default="<!-- Anything below this marker will be hidden -->",
        description="Everything from this marker on is dropped from bodies",
    )


class WebrevConfig(BaseSettings):
    """Webrev generation and storage."""

    model_config = SettingsConfigDict(env_prefix="WEBREV_", extra="ignore", frozen=True)

    generate_html: bool = Field(default=True, description="Generate HTML webrevs")
    generate_json: bool = Field(default=False, description="Generate JSON webrevs")
    html_storage_url: str = Field(default="", description="Repository receiving HTML webrevs")
    json_storage_url: str = Field(default="", description="Repository receiving JSON webrevs")
    ref: str = Field(default="webrevs", description="Branch webrevs are pushed to")
    base_path: str = Field(default="", description="Folder inside the storage repository")
    base_uri: str = Field(default="", description="Public URI the storage repository is served from")
    scratch_dir: str = Field(default=".mlbridge/webrevs", description="Local clones of the storage repositories")
    publish_timeout_minutes: int = Field(default=30, ge=1, description="Wait for an HTML webrev to become reachable")
    poll_interval_seconds: int = Field(default=10, ge=1, description="Delay between publication checks")


class IssueTrackerConfig(BaseSettings):
    """Issue tracker used for the Issue: line."""

    model_config = SettingsConfigDict(env_prefix="ISSUE_TRACKER_", extra="ignore", frozen=True)

    base_uri: str = Field(default="", description="e.g. https://bugs.openjdk.org/browse/")
    project: str = Field(default="", description="Project key prepended to issue ids, e.g. JDK")
    verify: bool = Field(default=False, description="Only link issues the tracker answers for")


class BridgeConfig(BaseSettings):
    """Bridge pass settings."""

    model_config = SettingsConfigDict(env_prefix="BRIDGE_", extra="ignore", frozen=True)

    cooldown_seconds: int = Field(default=0, ge=0, description="Minimum spacing between mails for one PR")
    state_dir: str = Field(default=".mlbridge/state", description="Where bridge records are kept")


class SchedulerConfig(BaseSettings):
    """Scheduler (polling) settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore", frozen=True)

    interval_seconds: int = Field(default=120, ge=1, description="Delay between bridge passes")


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore", frozen=True)

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore", frozen=True)

    bot: BotConfig = Field(default_factory=BotConfig)
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    mail: MailConfig = Field(default_factory=MailConfig)
    comments: CommentsConfig = Field(default_factory=CommentsConfig)
    webrev: WebrevConfig = Field(default_factory=WebrevConfig)
    issue_tracker: IssueTrackerConfig = Field(default_factory=IssueTrackerConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def github_token_resolved(self) -> str | None:
        """Resolve GitHub token from env or Docker secret file."""
        t = self.github.token
        if t and not t.startswith("${"):
            return t
        return _read_secret("GITHUB_TOKEN", "GITHUB_TOKEN_FILE")

    @property
    def smtp_password_resolved(self) -> str | None:
        """Resolve SMTP password from env or Docker secret file."""
        p = self.mail.smtp_password
        if p and not p.startswith("${"):
            return p
        return _read_secret("SMTP_PASSWORD", "SMTP_PASSWORD_FILE")

    def validate_identity(self) -> None:
        """Raise ConfigurationError unless a sender identity and a list are set."""
        if not self.bot.email or "@" not in self.bot.email:
            raise ConfigurationError("bot.email must be a valid sender address")
        if not self.bot.name:
            raise ConfigurationError("bot.name must not be empty")
        if not self.bot.username:
            raise ConfigurationError("bot.username must name the bot login on the review host")
        if not self.mail.lists:
            raise ConfigurationError("mail.lists must name at least one mailing list")
        if not (self.webrev.generate_html or self.webrev.generate_json):
            return
        if not self.webrev.base_uri:
            raise ConfigurationError("webrev.base_uri is required when webrevs are enabled")


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            key = value[2:-1].strip()
            return _current_env.get(key, value)
        # Simple $VAR
        if value.startswith("$") and not value.startswith("${"):
            key = value[1:].strip()
            return _current_env.get(key, value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load config from YAML file and environment.

    Secrets: GITHUB_TOKEN or GITHUB_TOKEN_FILE, SMTP_PASSWORD or SMTP_PASSWORD_FILE.
    Raises ConfigurationError when the file does not match the schema.
    """
    global _current_env
    import os

    _current_env = dict(os.environ)

    path = config_path or Path("config.yaml")
    if not path.is_file():
        return AppConfig()

    try:
        raw = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path}: {e}") from e
    raw = _substitute_env(raw)

    try:
        return AppConfig(
            bot=BotConfig(**(raw.get("bot") or {})),
            repository=RepositoryConfig(**(raw.get("repository") or {})),
            github=GitHubConfig(**(raw.get("github") or {})),
            archive=ArchiveConfig(**(raw.get("archive") or {})),
            mail=MailConfig(**(raw.get("mail") or {})),
            comments=CommentsConfig(**(raw.get("comments") or {})),
            webrev=WebrevConfig(**(raw.get("webrev") or {})),
            issue_tracker=IssueTrackerConfig(**(raw.get("issue_tracker") or {})),
            bridge=BridgeConfig(**(raw.get("bridge") or {})),
            scheduler=SchedulerConfig(**(raw.get("scheduler") or {})),
            logging=LoggingConfig(**(raw.get("logging") or {})),
        )
    except ValidationError as e:
        raise ConfigurationError(f"{path}: {e}") from e
