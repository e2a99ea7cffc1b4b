"""
Account deletion guard.

An account record is never removed while its subscription might still bill:

    1. read the record (missing → already deleted, idempotent success)
    2. cancel the subscription immediately at the processor
       (any failure, including a timeout → abort, nothing deleted)
    3. delete the account record
    4. delete the identity credential
    5. a step-4 failure after step 3 is logged as a partial cleanup;
       the caller still sees success

Ordering is the whole point: step 3 runs only after step 2 is confirmed.
"""

import logging

from app.core.exceptions import ProcessorError, SubscriptionCancelFailedError
from app.core.interfaces import IBillingProcessor, IIdentityProvider
from app.services.account_store import AccountStore

logger = logging.getLogger(__name__)

DELETED_MESSAGE = "Account deleted successfully. Any active subscription has been cancelled."
ALREADY_DELETED_MESSAGE = "Account already deleted."


class AccountDeletionService:
    """Deletes an account only after its subscription is confirmed cancelled."""

    def __init__(
        self,
        store: AccountStore,
        processor: IBillingProcessor,
        identity: IIdentityProvider,
    ):
        self._store = store
        self._processor = processor
        self._identity = identity

    async def delete_account(self, account_id: str) -> dict:
        """
        Run the deletion sequence for an account.

        Returns:
            {"success": True, "message": ...}

        Raises:
            SubscriptionCancelFailedError: The processor did not confirm the
                cancellation. The account and credential are untouched.
        """
        snapshot = await self._store.get(account_id)

        if snapshot is None:
            logger.info(f"Account {account_id} not found, cleaning up credential only")
            await self._delete_credential(account_id)
            return {"success": True, "message": ALREADY_DELETED_MESSAGE}

        if snapshot.subscription_id:
            try:
                await self._processor.cancel_immediately(snapshot.subscription_id)
            except ProcessorError as e:
                logger.error(
                    f"Refusing to delete account {account_id}: could not cancel "
                    f"subscription {snapshot.subscription_id}: {e}"
                )
                raise SubscriptionCancelFailedError(
                    "Could not cancel your subscription. Your account has NOT been deleted. "
                    "Please contact support if this issue persists."
                ) from e
            logger.info(f"Cancelled subscription {snapshot.subscription_id} for account {account_id}")

        await self._store.delete(account_id)
        logger.info(f"Deleted account record {account_id}")

        await self._delete_credential(account_id)

        return {"success": True, "message": DELETED_MESSAGE}

    async def _delete_credential(self, account_id: str) -> None:
        try:
            await self._identity.delete_credential(account_id)
        except Exception as e:
            logger.error(
                f"Partial cleanup: account {account_id} removed but credential "
                f"deletion failed: {e}"
            )
