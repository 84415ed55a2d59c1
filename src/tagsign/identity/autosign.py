"""
Autosign Engine - Policy-Based Certificate Signing Decisions

Decides whether a Puppet certificate signing request may be signed:

1. Decode the CSR and pull out the challenge password and preshared key
2. Compare the challenge password with the configured static secret
3. Search the inventory for the tag ``<global.tag>=<preshared key>``
4. Approve only when exactly one instance carries exactly that tag

The engine is fail-closed: there is no third outcome. If a decision cannot be
reached for any reason, the request is denied.
"""

import hmac
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..config import AutosignConfig
from ..errors import (
    ChallengePasswordMismatchError,
    NoOrAmbiguousMatchError,
    TagMismatchError,
    TagSignError,
)
from ..inventory.cache import TTLCache
from ..inventory.client import TagQueryClient
from ..logging import register_secret
from .csr import CertificateRequest, decode_request

logger = logging.getLogger(__name__)


class AutosignState(str, Enum):
    """
    Decision state machine. Linear, terminal on the first failure.

    APPROVED and DENIED are terminal.
    """
    INIT = "INIT"
    CSR_DECODED = "CSR_DECODED"
    CHALLENGE_PASSWORD_CHECKED = "CHALLENGE_PASSWORD_CHECKED"
    INVENTORY_QUERIED = "INVENTORY_QUERIED"
    MATCH_COUNT_EVALUATED = "MATCH_COUNT_EVALUATED"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


@dataclass(frozen=True)
class AuthorizationResult:
    """Outcome of one autosign decision."""
    approved: bool
    reason: str
    state: AutosignState
    hostname: str
    # Last state reached before the decision was made
    reached: AutosignState = AutosignState.INIT
    error_code: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.approved else 1

    @classmethod
    def deny(
        cls,
        hostname: str,
        reason: str,
        reached: AutosignState,
        error_code: Optional[str] = None,
    ) -> "AuthorizationResult":
        return cls(
            approved=False,
            reason=reason,
            state=AutosignState.DENIED,
            hostname=hostname,
            reached=reached,
            error_code=error_code,
        )


class _Progress:
    """Last state a decision reached, readable from another thread."""

    def __init__(self):
        self.state = AutosignState.INIT


class AutosignEngine:
    """
    Evaluates certificate signing requests against the inventory.

    Args:
        config: Validated autosign configuration
        client: Tag query client (built from ``config`` by default)
        cache: Optional result cache, consulted before each inventory query
    """

    def __init__(
        self,
        config: AutosignConfig,
        client: Optional[TagQueryClient] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.config = config
        self.client = client or TagQueryClient.from_config(config)
        self.cache = cache
        self._worker: Optional[threading.Thread] = None

    @property
    def abandoned(self) -> bool:
        """True while a timed out decision is still running in the background."""
        return self._worker is not None and self._worker.is_alive()

    def expected_tag(self, preshared_key: str) -> str:
        return f"{self.config.tag}={preshared_key}"

    def validate(self, raw_csr: bytes, hostname: str) -> AuthorizationResult:
        """
        Decide whether the CSR for ``hostname`` may be signed.

        Never raises: every failure becomes a denial whose reason is the
        failure's message.
        """
        return self._decide(raw_csr, hostname, _Progress())

    def _decide(self, raw_csr: bytes, hostname: str, progress: _Progress) -> AuthorizationResult:
        logger.info(f"Starting certificate signing for {hostname}")

        try:
            request = decode_request(raw_csr)
            # The key ends up in the searched tag and the cache key
            register_secret(request.preshared_key)
            progress.state = AutosignState.CSR_DECODED

            self._check_challenge_password(request)
            progress.state = AutosignState.CHALLENGE_PASSWORD_CHECKED

            expected = self.expected_tag(request.preshared_key)
            tags = self._search(expected)
            progress.state = AutosignState.INVENTORY_QUERIED

            self._check_match(tags, expected)
            progress.state = AutosignState.MATCH_COUNT_EVALUATED
        except TagSignError as e:
            logger.info(f"Not signing the request for {hostname}: {e.message}")
            return AuthorizationResult.deny(hostname, e.message, reached=progress.state, error_code=e.code)
        except Exception as e:
            # Fail closed on anything unforeseen, but keep the traceback
            logger.exception(f"Unexpected error while validating the request for {hostname}")
            return AuthorizationResult.deny(
                hostname,
                f"internal error: {e.__class__.__name__}",
                reached=progress.state,
                error_code="TS_INTERNAL_ERROR",
            )

        logger.info(f"Signing the request for {hostname}")
        return AuthorizationResult(
            approved=True,
            reason="exactly one matching instance",
            state=AutosignState.APPROVED,
            hostname=hostname,
            reached=progress.state,
        )

    def validate_with_timeout(
        self,
        raw_csr: bytes,
        hostname: str,
        timeout: Optional[float],
    ) -> AuthorizationResult:
        """
        Like ``validate`` but bounded by ``timeout`` seconds.

        The decision runs on a daemon thread. If it does not finish in time
        the request is denied with the last state the decision had reached,
        and the thread is abandoned: its late result is discarded and
        ``abandoned`` stays True until it ends.
        """
        if timeout is None:
            return self.validate(raw_csr, hostname)

        progress = _Progress()
        outcome: List[AuthorizationResult] = []
        worker = threading.Thread(
            target=lambda: outcome.append(self._decide(raw_csr, hostname, progress)),
            name="tagsign-decision",
            daemon=True,
        )
        self._worker = worker
        worker.start()
        worker.join(timeout)

        if outcome:
            return outcome[0]

        logger.warning(f"Decision for {hostname} timed out after {timeout}s in state {progress.state.value}")
        return AuthorizationResult.deny(
            hostname, "decision timed out", reached=progress.state, error_code="TS_INTERNAL_ERROR"
        )

    def close(self) -> None:
        """Close the inventory client, unless an abandoned decision still uses it."""
        if self.abandoned:
            logger.debug("Leaving inventory sessions open for the abandoned decision")
            return
        self.client.close()

    def _check_challenge_password(self, request: CertificateRequest) -> None:
        expected = self.config.challenge_password.encode("utf-8")
        supplied = request.challenge_password.encode("utf-8")
        if not hmac.compare_digest(expected, supplied):
            raise ChallengePasswordMismatchError()

    def _search(self, expected: str) -> List[str]:
        if self.cache is not None:
            cached = self.cache.get(expected)
            if cached is not None:
                return cached

        # dedup=False so two instances carrying the same key stay visible
        tags = self.client.get_tags_by_tag(expected, dedup=False)
        logger.debug(f"Inventory returned {len(tags)} matching tag(s)")

        if self.cache is not None:
            self.cache.put(expected, tags)
        return tags

    @staticmethod
    def _check_match(tags: List[str], expected: str) -> None:
        if len(tags) != 1:
            raise NoOrAmbiguousMatchError(len(tags))
        # The search filter should make this unreachable, check anyway
        if tags[0] != expected:
            raise TagMismatchError()
