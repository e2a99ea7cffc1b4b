"""
Database repository layer for the billing service.

Usage:
    from app.db.repositories import AccountRepository

    account_repo = AccountRepository(session)
    account = await account_repo.get_by_id(account_id)
"""

from app.db.repositories.account_repo import AccountRepository
from app.db.repositories.base_repo import BaseRepository
from app.db.repositories.credential_repo import CredentialRepository

__all__ = [
    "AccountRepository",
    "BaseRepository",
    "CredentialRepository",
]
