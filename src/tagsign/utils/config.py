"""
tagsign Runtime Settings

Provides process-level settings with:
- Environment variable loading (TAGSIGN_ prefix)
- Type validation via Pydantic
- Development overrides via .env file

The autosign configuration file itself (challenge password, tag, accounts)
is handled by ``tagsign.config``; these settings only decide where to find it
and how the inventory layer behaves.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List


DEFAULT_CONFIG_PATHS = [
    "/etc/puppet/rightscale.conf",
    "/etc/tagsign/rightscale.conf",
]


class TagSignSettings(BaseSettings):
    """
    tagsign settings.

    Loads from environment variables with TAGSIGN_ prefix.

    Usage:
        from tagsign.utils.config import settings

        timeout = settings.SEARCH_TIMEOUT
    """
    model_config = SettingsConfigDict(
        env_prefix='TAGSIGN_',
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    # ==========================================================================
    # GENERAL
    # ==========================================================================
    ENVIRONMENT: str = Field(default="development", description="Runtime environment: development, staging, production")
    LOG_LEVEL: str = Field(default="WARNING", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    # ==========================================================================
    # CONFIG FILE
    # ==========================================================================
    CONFIG_PATH: Optional[str] = Field(default=None, description="Explicit autosign config file (overrides the search path)")

    # ==========================================================================
    # INVENTORY
    # ==========================================================================
    SEARCH_TIMEOUT: float = Field(default=30.0, description="Timeout in seconds for each tag search call")
    TOKEN_TIMEOUT: float = Field(default=15.0, description="Timeout in seconds for the OAuth2 token exchange")
    HTTP_RETRIES: int = Field(default=3, description="Retries for transient inventory API failures")
    MAX_WORKERS: int = Field(default=4, description="Maximum accounts searched in parallel")

    # ==========================================================================
    # LOOKUP BACKEND
    # ==========================================================================
    TAG_PREFIX: str = Field(default="nd:", description="Lookup keys must start with this prefix")
    CACHE_TIMEOUT: Optional[float] = Field(default=None, description="Lookup cache TTL in seconds (unset disables caching)")

    # ==========================================================================
    # AUTOSIGN
    # ==========================================================================
    DECISION_TIMEOUT: Optional[float] = Field(default=None, description="Overall autosign decision timeout in seconds")

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    def config_paths(self) -> List[str]:
        """Candidate autosign config files, in search order."""
        if self.CONFIG_PATH:
            return [self.CONFIG_PATH]
        return list(DEFAULT_CONFIG_PATHS)


# Global settings instance
settings = TagSignSettings()
