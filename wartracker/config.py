from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

PLACEHOLDER_TOKEN = "YOUR_DISCORD_BOT_TOKEN_HERE"
PLACEHOLDER_GUILD_ID = "YOUR_TESTING_SERVER_ID_HERE"

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_DB_PATH = "guild_data.db"


class ConfigError(RuntimeError):
    """Raised when settings are not usable for booting the bot."""


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    if v is None:
        return default
    return v


def _split_ids(raw: Any) -> List[str]:
    """
    Normalize a list of Discord snowflakes.

    Supports:
      - list (already parsed, ints or strings)
      - comma-separated string: "123, 456"
    """
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(x).strip() for x in raw]
    else:
        items = [p.strip() for p in str(raw).split(",")]
    return [x for x in items if x]


class GuildConfig(BaseModel):
    """
    Per-guild leadership settings.

    Keys accept both the snake_case names and the config.json names
    (GuildID / LeaderRoleIDs / LeaderUserIDs).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    guild_id: str = Field(default="", validation_alias=AliasChoices("guild_id", "GuildID"))
    leader_role_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("leader_role_ids", "LeaderRoleIDs"),
    )
    leader_user_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("leader_user_ids", "LeaderUserIDs"),
    )

    @field_validator("guild_id", mode="before")
    @classmethod
    def _norm_guild_id(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip()

    @field_validator("leader_role_ids", "leader_user_ids", mode="before")
    @classmethod
    def _norm_ids(cls, v: Any) -> List[str]:
        return _split_ids(v)


class Settings(BaseSettings):
    """
    Central bot settings.

    Sources, highest priority first:
    - keyword arguments (load_settings passes the JSON config file through here)
    - environment variables
    - .env file

    Every field accepts its environment name and, where the older
    config.json had one, the config.json key.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    log_level: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))

    # -------------------------
    # Discord
    # -------------------------
    discord_bot_token: str = Field(
        default="",
        validation_alias=AliasChoices("DISCORD_BOT_TOKEN", "BotToken", "discord_bot_token"),
    )

    # Deprecated single-guild settings (backward compatibility)
    guild_id: str = Field(
        default="",
        validation_alias=AliasChoices("DISCORD_GUILD_ID", "GuildID", "guild_id"),
    )
    leader_role_id: str = Field(
        default="",
        validation_alias=AliasChoices("WARTRACKER_LEADER_ROLE_ID", "LeaderRoleID", "leader_role_id"),
    )

    # Multi-guild settings; env form is a JSON list
    guilds: List[GuildConfig] = Field(
        default_factory=list,
        validation_alias=AliasChoices("WARTRACKER_GUILDS", "Guilds", "guilds"),
    )

    # Members intent is privileged; allow disabling it
    enable_guild_members_intent: bool = Field(
        default=True,
        validation_alias=AliasChoices("ENABLE_GUILD_MEMBERS_INTENT", "enable_guild_members_intent"),
    )

    # TLS options for environments with intercepting proxies or custom CAs
    tls_insecure_skip_verify: bool = Field(
        default=False,
        validation_alias=AliasChoices("TLS_INSECURE_SKIP_VERIFY", "TLSInsecureSkipVerify", "tls_insecure_skip_verify"),
    )
    custom_root_ca_path: str = Field(
        default="",
        validation_alias=AliasChoices("CUSTOM_ROOT_CA_PATH", "CustomRootCAPath", "custom_root_ca_path"),
    )

    # Optional allow/deny lists for command modules (comma-separated)
    commands_allow: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("WARTRACKER_COMMANDS_ALLOW", "commands_allow"),
    )
    commands_deny: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("WARTRACKER_COMMANDS_DENY", "commands_deny"),
    )

    # Background role resync
    role_resync_delay_s: float = Field(
        default=10.0,
        ge=0,
        validation_alias=AliasChoices("ROLE_RESYNC_DELAY_SECONDS", "role_resync_delay_s"),
    )
    role_resync_interval_s: float = Field(
        default=30 * 24 * 3600.0,
        gt=0,
        validation_alias=AliasChoices("ROLE_RESYNC_INTERVAL_SECONDS", "role_resync_interval_s"),
    )

    # -------------------------
    # Storage
    # -------------------------
    db_path: str = Field(
        default=DEFAULT_DB_PATH,
        validation_alias=AliasChoices("DB_PATH", "DBPath", "db_path"),
    )
    storage_timeout_s: float = Field(
        default=3.0,
        gt=0,
        validation_alias=AliasChoices("STORAGE_TIMEOUT_SECONDS", "storage_timeout_s"),
    )

    # -------------------------
    # Leader election (active/standby)
    # -------------------------
    lease_duration_s: float = Field(
        default=10.0,
        gt=0,
        validation_alias=AliasChoices("LEADER_LEASE_SECONDS", "lease_duration_s"),
    )
    leader_retry_s: float = Field(
        default=2.0,
        gt=0,
        validation_alias=AliasChoices("LEADER_RETRY_SECONDS", "leader_retry_s"),
    )
    leader_takeover_if_stale: bool = Field(
        default=True,
        validation_alias=AliasChoices("LEADER_TAKEOVER_IF_STALE", "leader_takeover_if_stale"),
    )
    leader_step_down_on_loss: bool = Field(
        default=True,
        validation_alias=AliasChoices("LEADER_STEP_DOWN_ON_LOSS", "leader_step_down_on_loss"),
    )

    # -------------------------
    # Validators / normalizers
    # -------------------------

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().upper()
        return s or "INFO"

    @field_validator("discord_bot_token", "guild_id", "leader_role_id", "custom_root_ca_path", mode="before")
    @classmethod
    def _norm_str(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip()

    @field_validator("db_path", mode="before")
    @classmethod
    def _norm_db_path(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or DEFAULT_DB_PATH

    @field_validator("enable_guild_members_intent", mode="before")
    @classmethod
    def _norm_members_intent(cls, v: Any) -> Any:
        # Only unset, empty, "1", "true" or "TRUE" turn the intent on
        if v is None:
            return True
        if isinstance(v, str):
            return v.strip() in ("", "1", "true", "TRUE")
        return v

    @field_validator("commands_allow", "commands_deny", mode="before")
    @classmethod
    def _norm_module_list(cls, v: Any) -> List[str]:
        return _split_ids(v)

    @field_validator("guilds", mode="before")
    @classmethod
    def _norm_guilds(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            return json.loads(s)
        return v

    # -------------------------
    # Derived helpers
    # -------------------------

    @property
    def renew_interval_s(self) -> float:
        return self.lease_duration_s / 2

    def guild_list(self) -> List[GuildConfig]:
        """Configured guilds, falling back to the deprecated single-guild fields."""
        if self.guilds:
            return list(self.guilds)
        if self.guild_id:
            return [self._legacy_guild()]
        return []

    def guild_config_for(self, guild_id: Optional[str]) -> Optional[GuildConfig]:
        gid = ("" if guild_id is None else str(guild_id)).strip()
        if not gid:
            return None
        for g in self.guilds:
            if g.guild_id == gid:
                return g
        if self.guild_id == gid:
            return self._legacy_guild()
        return None

    def _legacy_guild(self) -> GuildConfig:
        roles = [self.leader_role_id] if self.leader_role_id else []
        return GuildConfig(guild_id=self.guild_id, leader_role_ids=roles)

    @property
    def resolved_database_url(self) -> str:
        """
        Accepts:
          - DB_PATH as a full sqlite URL ("sqlite:///./data/x.db")
          - Or a file path ("guild_data.db", "data/x.db", "/abs/path/x.db")
        """
        path = self.db_path
        if path.startswith("sqlite:"):
            return path

        p = Path(path)
        if not p.is_absolute():
            if str(p).startswith("./"):
                return f"sqlite:///{p.as_posix()}"
            return f"sqlite:///./{p.as_posix()}"

        # Absolute path needs 4 slashes after scheme (sqlite:////abs/path)
        return f"sqlite:////{p.as_posix().lstrip('/')}"

    def validate_runtime(self) -> None:
        """
        Strict validation for boot safety. Avoids Discord 4004 auth failures
        caused by placeholder values.
        """
        if not self.discord_bot_token or self.discord_bot_token == PLACEHOLDER_TOKEN:
            raise ConfigError(
                "BotToken is missing or placeholder; set DISCORD_BOT_TOKEN or update config.json with a real token."
            )

        has_legacy = bool(self.guild_id) and self.guild_id != PLACEHOLDER_GUILD_ID
        if not has_legacy and not self.guilds:
            raise ConfigError("No guilds configured; set GuildID or provide Guilds[] in config.json.")

        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if self.log_level not in allowed:
            raise ConfigError(f"LOG_LEVEL must be one of: {', '.join(sorted(allowed))}")

        if self.custom_root_ca_path and not Path(self.custom_root_ca_path).is_file():
            raise ConfigError(f"CustomRootCAPath does not exist: {self.custom_root_ca_path}")


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Build Settings from env/.env, overlaid with a JSON config file when present.

    The file path comes from the argument, then WARTRACKER_CONFIG, then
    ./config.json. A missing file is not an error.
    """
    path = Path(config_path or _env("WARTRACKER_CONFIG", DEFAULT_CONFIG_PATH))
    if not path.is_file():
        return Settings()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object.")
    return Settings(**data)


__all__ = ["ConfigError", "GuildConfig", "Settings", "load_settings"]
