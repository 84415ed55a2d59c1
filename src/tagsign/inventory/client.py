"""
Inventory Query Client - Tag Search Across RightScale Accounts

The inventory is partitioned into accounts, each authenticated on its own.
A tag search is fanned out to every configured account and the returned tag
names are merged into a single sorted list.

RightScale's ``tags/by_tag`` call returns resource_tag objects, not full
instance details. Each carries a ``tags`` list of ``{"name": ...}`` entries,
and only those names are kept.

Note: RightScale de-dupes tags per account. Callers that need to see the same
tag on several instances (to detect duplicates as a policy signal) must pass
``dedup=False``.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

import requests

from ..config import AccountSection, AutosignConfig, DEFAULT_API_URL
from ..errors import (
    InventoryQueryError,
    MissingCredentialsError,
    TokenExchangeFailedError,
)
from ..utils.config import settings
from ..utils.http import build_session, post_form
from .tags import split_tag

logger = logging.getLogger(__name__)

RESOURCE_TYPE_INSTANCES = "instances"


@dataclass(frozen=True)
class InventoryAccount:
    """Credentials and endpoint for one inventory account."""
    account_id: str
    email: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    oauth2_token: Optional[str] = field(default=None, repr=False)
    api_url: str = DEFAULT_API_URL

    @classmethod
    def from_config(cls, section: AccountSection) -> "InventoryAccount":
        return cls(
            account_id=section.account_id,
            email=section.email,
            password=section.password,
            oauth2_token=section.oath2_token,
            api_url=section.api_url.rstrip("/"),
        )

    @property
    def uses_token(self) -> bool:
        return bool(self.oauth2_token)

    @property
    def account_href(self) -> str:
        return f"/api/accounts/{self.account_id}"


def get_access_token(
    account: InventoryAccount,
    http: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Exchange the account's OAuth2 refresh token for a short-lived access token.

    Args:
        account: Account carrying ``oauth2_token``
        http: Session to use (a fresh standard session by default)
        timeout: Request timeout in seconds (default TAGSIGN_TOKEN_TIMEOUT)

    Returns:
        The access token string

    Raises:
        TokenExchangeFailedError: on any non-200 status, transport failure or
            a response without ``access_token``
    """
    http = http or build_session()
    timeout = settings.TOKEN_TIMEOUT if timeout is None else timeout
    url = f"{account.api_url}/api/oauth2"

    logger.debug(f"Reaching out to {url} for a token...")
    try:
        response = post_form(
            http,
            url,
            {"grant_type": "refresh_token", "refresh_token": account.oauth2_token},
            timeout=timeout,
            headers={"Accept": "*/*"},
        )
    except requests.RequestException as e:
        raise TokenExchangeFailedError(account.account_id, reason=e.__class__.__name__) from e

    if response.status_code != 200:
        raise TokenExchangeFailedError(account.account_id, status_code=response.status_code)

    try:
        token = response.json()["access_token"]
    except (ValueError, KeyError, TypeError):
        raise TokenExchangeFailedError(account.account_id, reason="response carried no access_token") from None
    if not token:
        raise TokenExchangeFailedError(account.account_id, reason="empty access_token")

    logger.info(f"Got access token for account {account.account_id}")
    return token


class AccountSession:
    """
    An authenticated connection to one account.

    Created once per account by ``login`` and reused for every search.
    """

    def __init__(
        self,
        account: InventoryAccount,
        http: requests.Session,
        search_timeout: Optional[float] = None,
    ):
        self.account = account
        self.http = http
        self.search_timeout = settings.SEARCH_TIMEOUT if search_timeout is None else search_timeout

    @classmethod
    def login(
        cls,
        account: InventoryAccount,
        http: Optional[requests.Session] = None,
        search_timeout: Optional[float] = None,
        token_timeout: Optional[float] = None,
    ) -> "AccountSession":
        """
        Authenticate against the account.

        The refresh token takes precedence over email/password when both are
        configured. With neither, fail before touching the network.
        """
        if not account.uses_token and not (account.email and account.password):
            raise MissingCredentialsError(account.account_id)

        http = http or build_session()
        session = cls(account, http, search_timeout=search_timeout)

        if account.uses_token:
            access_token = get_access_token(account, http=http, timeout=token_timeout)
            http.headers["Authorization"] = f"Bearer {access_token}"
            return session

        try:
            response = post_form(
                http,
                f"{account.api_url}/api/session",
                {
                    "email": account.email,
                    "password": account.password,
                    "account_href": account.account_href,
                },
                timeout=session.search_timeout,
            )
        except requests.RequestException as e:
            raise InventoryQueryError(account.account_id, f"login failed: {e.__class__.__name__}") from e

        if response.status_code not in (200, 201, 204):
            raise InventoryQueryError(account.account_id, f"login failed (HTTP {response.status_code})")
        return session

    def by_tag(
        self,
        tags: Sequence[str],
        tag_prefix: str,
        resource_type: str = RESOURCE_TYPE_INSTANCES,
    ) -> List[Dict[str, Any]]:
        """Issue a ``tags/by_tag`` search and return the raw resource_tag objects."""
        account_id = self.account.account_id
        data = [
            ("resource_type", resource_type),
            ("include_tags_with_prefix", tag_prefix),
        ] + [("tags[]", t) for t in tags]

        try:
            response = post_form(
                self.http,
                f"{self.account.api_url}/api/tags/by_tag",
                data,
                timeout=self.search_timeout,
            )
        except requests.RequestException as e:
            raise InventoryQueryError(account_id, e.__class__.__name__) from e

        if response.status_code != 200:
            raise InventoryQueryError(account_id, f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise InventoryQueryError(account_id, "response was not JSON") from None
        if not isinstance(payload, list):
            raise InventoryQueryError(account_id, "unexpected response shape")
        return payload

    def tag_names(self, tags: Sequence[str], tag_prefix: str) -> List[str]:
        """Search and flatten every returned resource's tag names."""
        names = []
        for resource in self.by_tag(tags, tag_prefix):
            if not isinstance(resource, dict) or not isinstance(resource.get("tags", []), list):
                raise InventoryQueryError(self.account.account_id, "unexpected resource shape")
            for kv in resource.get("tags", []):
                if not isinstance(kv, dict) or not isinstance(kv.get("name"), str):
                    raise InventoryQueryError(self.account.account_id, "unexpected tag shape")
                names.append(kv["name"])
        return names

    def close(self) -> None:
        self.http.close()


SessionFactory = Callable[[InventoryAccount], AccountSession]


class TagQueryClient:
    """
    Tag search across every configured account.

    Sessions are created lazily, once per account, and memoized for the
    life of the client so repeated searches never re-authenticate.
    """

    def __init__(
        self,
        accounts: Sequence[InventoryAccount],
        session_factory: Optional[SessionFactory] = None,
        max_workers: Optional[int] = None,
    ):
        self.accounts = list(accounts)
        self.max_workers = max_workers or settings.MAX_WORKERS
        self._session_factory = session_factory or AccountSession.login
        self._sessions: Dict[str, AccountSession] = {}
        self._locks = {a.account_id: threading.Lock() for a in self.accounts}

    @classmethod
    def from_config(cls, config: AutosignConfig, **kwargs) -> "TagQueryClient":
        accounts = [InventoryAccount.from_config(section) for section in config.accounts]
        return cls(accounts, **kwargs)

    def get_session(self, account: InventoryAccount) -> AccountSession:
        """Return the memoized session for ``account``, logging in on first use."""
        with self._locks[account.account_id]:
            session = self._sessions.get(account.account_id)
            if session is None:
                logger.debug(f"Creating client object for account {account.account_id}...")
                session = self._session_factory(account)
                self._sessions[account.account_id] = session
            return session

    def get_tags_by_tag(self, tag: str, dedup: bool = True) -> List[str]:
        """
        Search for ``tag`` in every account.

        Args:
            tag: ``namespace``, ``namespace:predicate`` or a full
                ``namespace:predicate=value`` tag
            dedup: Return unique tags (default). With False, the sorted list
                keeps one entry per matching resource.

        Returns:
            Sorted list of matching tag names, e.g. searching ``nd:auth``
            returns ``["nd:auth=eng", "nd:auth=prod"]``
        """
        expression = split_tag(tag)
        return self.search_by_tag_prefix(expression.namespace, expression.predicate, tag, dedup=dedup)

    def search_by_tag_prefix(
        self,
        namespace: str,
        predicate: Optional[str],
        full_tag: str,
        dedup: bool = True,
    ) -> List[str]:
        """Search every account for ``full_tag``, narrowed to ``namespace:predicate``."""
        # The prefix must carry the ':' even when the predicate is empty
        tag_prefix = f"{namespace}:{predicate or ''}"
        if not self.accounts:
            return []

        workers = max(1, min(self.max_workers, len(self.accounts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tagsign-search") as pool:
            futures = [
                pool.submit(self._search_account, account, tag_prefix, full_tag)
                for account in self.accounts
            ]
            # Merge in account order; arrival order never matters
            per_account = [future.result() for future in futures]

        results = sorted(name for names in per_account for name in names)
        if dedup:
            return sorted(set(results))
        return results

    def _search_account(self, account: InventoryAccount, tag_prefix: str, full_tag: str) -> List[str]:
        logger.info(f"Searching account {account.account_id} for instances with tag prefix: {tag_prefix}")
        session = self.get_session(account)
        names = session.tag_names([full_tag], tag_prefix)
        logger.debug(f"Account {account.account_id} returned {len(names)} tag(s)")
        return names

    def close(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
