"""
Autosign Configuration File

Loads and validates the INI file shared by the autosign policy executable and
the lookup backend:

    [global]
    challenge_password = '...'
    tag = namespace:predicate
    debug = /path/to/debug.log

    [1234]
    email = '...'
    password = '...'

    [5678]
    oath2_token = '...'
    api_url = https://us-4.rightscale.com

Every section other than [global] is an inventory account, keyed by its
account id. An account needs either an email/password pair or an
oath2_token (refresh token).
"""

import configparser
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigurationInvalidError

logger = logging.getLogger(__name__)

GLOBAL_SECTION = "global"
DEFAULT_API_URL = "https://my.rightscale.com"

# Older config files used these spellings
LEGACY_KEYS = {
    "challange_password": "challenge_password",
    "rightscale_email": "email",
    "rightscale_password": "password",
}


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


class GlobalSection(BaseModel):
    """The [global] section."""
    challenge_password: str = Field(min_length=1)
    tag: str = Field(min_length=1)
    debug: Optional[str] = None

    @field_validator("tag")
    @classmethod
    def _tag_has_namespace(cls, v: str) -> str:
        if ":" not in v:
            raise ValueError("tag must be in the form 'namespace:predicate'")
        return v


class AccountSection(BaseModel):
    """One inventory account stanza."""
    account_id: str
    email: Optional[str] = None
    password: Optional[str] = None
    oath2_token: Optional[str] = None
    api_url: str = DEFAULT_API_URL

    @model_validator(mode="after")
    def _has_credentials(self) -> "AccountSection":
        if not self.oath2_token and not (self.email and self.password):
            raise ValueError(
                f"account {self.account_id} missing either email, password or oath2_token"
            )
        return self

    def __repr__(self) -> str:
        # Credentials stay out of reprs (and therefore out of logs)
        return f"AccountSection(account_id={self.account_id!r}, api_url={self.api_url!r})"


class AutosignConfig(BaseModel):
    """Validated autosign configuration."""
    global_: GlobalSection
    accounts: List[AccountSection]
    source: Optional[str] = None

    @field_validator("accounts")
    @classmethod
    def _at_least_one_account(cls, v: List[AccountSection]) -> List[AccountSection]:
        if not v:
            raise ValueError("the config file must contain at least one account stanza")
        return v

    @property
    def challenge_password(self) -> str:
        return self.global_.challenge_password

    @property
    def tag(self) -> str:
        return self.global_.tag

    @property
    def debug(self) -> Optional[str]:
        return self.global_.debug

    def account_ids(self) -> List[str]:
        return [a.account_id for a in self.accounts]

    @classmethod
    def from_sections(
        cls,
        sections: Dict[str, Dict[str, str]],
        source: Optional[str] = None,
    ) -> "AutosignConfig":
        """Build a config from already-parsed ``{section: {key: value}}`` data."""
        if GLOBAL_SECTION not in sections:
            raise ConfigurationInvalidError("the config file must have a global section")

        normalized = {name: _normalize_keys(values) for name, values in sections.items()}
        global_values = normalized[GLOBAL_SECTION]
        for required in ("challenge_password", "tag"):
            if not global_values.get(required):
                raise ConfigurationInvalidError(
                    "the config file must have a challenge_password and tag specified",
                    section=GLOBAL_SECTION,
                )

        try:
            global_section = GlobalSection(**global_values)
            accounts = [
                AccountSection(account_id=name, **values)
                for name, values in normalized.items()
                if name != GLOBAL_SECTION
            ]
            return cls(global_=global_section, accounts=accounts, source=source)
        except ValidationError as e:
            # Only surface field locations and messages, never input values
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationInvalidError(problems) from None


def _normalize_keys(values: Dict[str, str]) -> Dict[str, str]:
    out = {}
    for key, value in values.items():
        key = LEGACY_KEYS.get(key.lower(), key.lower())
        value = _unquote(value)
        if value == "":
            continue
        out.setdefault(key, value)
    return out


def parse_config(text: str, source: Optional[str] = None) -> AutosignConfig:
    """Parse INI text into a validated AutosignConfig."""
    parser = configparser.ConfigParser(interpolation=None, default_section="__defaults__")
    try:
        parser.read_string(text, source=source or "<string>")
    except configparser.Error as e:
        raise ConfigurationInvalidError(f"unparseable config file: {e.__class__.__name__}") from None

    sections = {name: dict(parser.items(name)) for name in parser.sections()}
    return AutosignConfig.from_sections(sections, source=source)


def load_config(paths: Iterable[Union[str, Path]]) -> AutosignConfig:
    """
    Load the first config file that exists from ``paths``.

    Raises ConfigurationInvalidError if none exists or the first one found is
    invalid.
    """
    searched = []
    for candidate in paths:
        path = Path(candidate)
        searched.append(str(path))
        logger.debug(f"Looking for config file at {path}")
        if not path.is_file():
            continue
        logger.debug(f"Found config file ({path})")
        return parse_config(path.read_text(encoding="utf-8"), source=str(path))

    raise ConfigurationInvalidError(f"could not find config file here: {searched}")
