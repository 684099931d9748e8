"""Mail Gateway and credential capabilities consumed by the sweeper.

tidyinbox never talks to a mail provider directly. A deployment supplies a
``MailGateway`` (list recent messages, batch-mutate labels) and a
``CredentialProvider`` (owner id -> opaque credential) through a factory
named in config:

    gateway:
      factory: "mycompany.gmail:build_gateway"
      options:
        client_secrets: "secrets/client.json"

The factory is called with the ``options`` mapping and must return a
``(MailGateway, CredentialProvider)`` pair.

Gateways report failures with the errors in ``tidyinbox.core.errors``:
``AuthExpiredError`` for an invalid or expired credential,
``TransientGatewayError`` for rate limits and timeouts, and plain
``GatewayError`` for anything else.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from tidyinbox.classifier.types import MessageMetadata
from tidyinbox.core.errors import AuthExpiredError, ConfigValidationError
from tidyinbox.core.logging import get_logger

logger = get_logger(__name__)

INBOX_LABEL = "INBOX"
TRASH_LABEL = "TRASH"


@runtime_checkable
class MailGateway(Protocol):
    """Interface for listing and mutating mailbox items."""

    async def list_recent(self, credential: Any, max_count: int) -> list[MessageMetadata]:
        """Return up to ``max_count`` of the most recent inbox items."""
        ...

    async def mutate(
        self,
        credential: Any,
        message_ids: Sequence[str],
        *,
        add_labels: Sequence[str] = (),
        remove_labels: Sequence[str] = (),
    ) -> dict[str, bool]:
        """Apply label changes to each message.

        Mutations must be idempotent; the sweeper may resubmit an id after a
        partial failure on a later run.

        Returns:
            Dict of message_id -> whether the change was applied
        """
        ...


@runtime_checkable
class CredentialProvider(Protocol):
    """Interface for resolving an owner's mailbox credential."""

    async def get_credential(self, owner_id: str) -> Any | None:
        """Return the owner's credential, or None if they have none."""
        ...


GatewayFactory = Callable[[Mapping[str, str]], tuple[MailGateway, CredentialProvider]]


async def require_credential(provider: CredentialProvider, owner_id: str) -> Any:
    """Resolve an owner's credential.

    Raises:
        AuthExpiredError: If the owner has no usable credential
    """
    credential = await provider.get_credential(owner_id)
    if credential is None:
        raise AuthExpiredError(
            f"No mailbox credential for owner '{owner_id}'. "
            "Reconnect the mailbox to resume automation.",
            owner_id=owner_id,
        )
    return credential


def mutation_labels(target_action: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Label changes for a rule's target action.

    Returns:
        Tuple of (add_labels, remove_labels)
    """
    if target_action == "archive":
        return (), (INBOX_LABEL,)
    if target_action == "delete":
        return (TRASH_LABEL,), (INBOX_LABEL,)
    raise ValueError(f"Unsupported target action: {target_action}")


def load_gateway_factory(path: str) -> GatewayFactory:
    """Import a gateway factory from a ``module:callable`` path.

    Raises:
        ConfigValidationError: If the module or attribute cannot be loaded
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigValidationError(
            f"gateway.factory must look like 'package.module:callable', got '{path}'"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigValidationError(
            f"Cannot import gateway module '{module_name}': {e}\n"
            "  Install the package that provides it or fix gateway.factory in config.yaml."
        ) from e

    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise ConfigValidationError(
            f"gateway.factory '{path}' does not name a callable in '{module_name}'"
        )

    logger.debug("gateway_factory_loaded", factory=path)
    return factory


def build_gateway(
    path: str, options: Mapping[str, str]
) -> tuple[MailGateway, CredentialProvider]:
    """Load the configured factory and build the gateway pair."""
    gateway, credentials = load_gateway_factory(path)(options)
    if not isinstance(gateway, MailGateway) or not isinstance(credentials, CredentialProvider):
        raise ConfigValidationError(
            f"gateway.factory '{path}' must return (MailGateway, CredentialProvider)"
        )
    return gateway, credentials
