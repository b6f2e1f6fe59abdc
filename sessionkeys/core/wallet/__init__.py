"""
Credential Model

Owner (master) and session validators and the account that holds them.

Usage:
    from sessionkeys.core.wallet import (
        LocalAccountSigner,
        SessionValidator,
        ValidatorRole,
        create_account,
        install_validator,
    )

    owner = LocalAccountSigner.from_key(private_key)
    account = create_account(owner)

    session = SessionValidator(
        signer=AddressOnlySigner(session_address),
        policies=(call_policy,),
    )
    account = install_validator(account, session, ValidatorRole.REGULAR)
"""

from .accounts import create_account, install_validator, uninstall_validator
from .models import (
    PERMISSION_SIGNATURE_PREFIX,
    Account,
    MasterValidator,
    SessionValidator,
    ValidationType,
    Validator,
    ValidatorRole,
)
from .signers import AddressOnlySigner, LocalAccountSigner, Signer, same_identity

__all__ = [
    # Models
    "Account",
    "MasterValidator",
    "SessionValidator",
    "Validator",
    "ValidatorRole",
    "ValidationType",
    "PERMISSION_SIGNATURE_PREFIX",
    # Operations
    "create_account",
    "install_validator",
    "uninstall_validator",
    # Signers
    "Signer",
    "LocalAccountSigner",
    "AddressOnlySigner",
    "same_identity",
]
