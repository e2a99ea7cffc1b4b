"""
Abstract base classes defining the contracts with external collaborators.

The payment processor, identity provider, email transport and rate-limit
counter store each fail independently of the account database. Services
depend on these interfaces so tests can substitute doubles and deployments
can swap implementations at startup.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.core.models import ProcessorCheckoutSession, ProcessorSubscription


class IBillingProcessor(ABC):
    """Interface for the external payment/subscription processor.

    Every call must be safe to retry: implementations key mutations by
    subscription id so a repeated request has no additional effect.
    """

    @abstractmethod
    async def set_cancel_at_period_end(
        self, subscription_id: str, cancel: bool
    ) -> ProcessorSubscription:
        """
        Schedule (``cancel=True``) or unschedule cancellation at period end.

        Returns:
            The processor's updated subscription, including its
            authoritative period-end timestamp.

        Raises:
            ProcessorError: Remote error.
            ProcessorTimeoutError: No answer within the configured timeout.
        """
        ...

    @abstractmethod
    async def cancel_immediately(self, subscription_id: str) -> None:
        """
        Cancel a subscription now, not at period end.

        A subscription that is already canceled or no longer exists counts
        as success.

        Raises:
            ProcessorError / ProcessorTimeoutError on failure.
        """
        ...

    @abstractmethod
    async def list_subscriptions(self, customer_id: str) -> list[ProcessorSubscription]:
        """List a customer's subscriptions, most recent first."""
        ...

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        """Fetch one subscription by id."""
        ...

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> ProcessorCheckoutSession:
        """
        Fetch a hosted checkout session by id.

        The session names the account it was opened for and, once paid,
        the customer and subscription it created.
        """
        ...


class IIdentityProvider(ABC):
    """Interface for the identity provider that issues actor tokens."""

    @abstractmethod
    def verify_token(self, token: str) -> str:
        """
        Verify an identity token and return the actor id it was issued to.

        Raises:
            AuthenticationError: If the token is missing, invalid or expired.
        """
        ...

    @abstractmethod
    async def delete_credential(self, actor_id: str) -> bool:
        """Delete the credential record. Returns False if it did not exist."""
        ...


@dataclass(frozen=True)
class EmailMessage:
    """A rendered email ready for delivery."""

    to: str
    subject: str
    html: str


class IEmailTransport(ABC):
    """Interface for outbound transactional email delivery."""

    @abstractmethod
    async def deliver(self, message: EmailMessage) -> str:
        """Send a message and return the provider's message id."""
        ...
