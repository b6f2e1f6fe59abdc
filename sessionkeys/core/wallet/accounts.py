"""
Credential model operations.

Pure functions over Account values. None of them perform network I/O; the
session lifecycle manager applies them only after the matching install or
uninstall Operation has a successful receipt.
"""

import logging
from dataclasses import replace
from typing import Optional

from eth_utils import is_address, to_checksum_address

from ..recovery.errors import ConfigurationError, ValidatorAlreadyInstalled
from .models import Account, MasterValidator, SessionValidator, Validator, ValidatorRole
from .signers import Signer


logger = logging.getLogger(__name__)


def create_account(
    owner_signer: Signer,
    address: Optional[str] = None,
    entry_point_version: str = "0.7",
    kernel_version: str = "0.3.1",
    chain_id: int = 11155111,
    validator_module: str = "",
) -> Account:
    """
    Create the account identity for an owner.

    Without an explicit ``address`` the account lives at the owner's own
    address (EIP-7702 delegation).
    """
    account_address = address or owner_signer.address
    if not is_address(account_address):
        raise ConfigurationError(f"Invalid account address: {account_address!r}")

    return Account(
        address=to_checksum_address(account_address),
        sudo_validator=MasterValidator(signer=owner_signer, module_address=validator_module),
        entry_point_version=entry_point_version,
        kernel_version=kernel_version,
        chain_id=chain_id,
    )


def install_validator(account: Account, validator: Validator, role: ValidatorRole) -> Account:
    """
    Install a validator under ``role``.

    A sudo install replaces the master validator. Only one regular
    validator may be active at a time.
    """
    role = ValidatorRole(role)
    if role == ValidatorRole.SUDO:
        if not isinstance(validator, MasterValidator):
            raise ConfigurationError("Only a MasterValidator can be installed as sudo")
        logger.info(f"Replacing sudo validator on {account.address} with {validator.ref}")
        return replace(account, sudo_validator=validator)

    if not isinstance(validator, SessionValidator):
        raise ConfigurationError("Only a SessionValidator can be installed as regular")

    current = account.regular_validator
    if current is not None:
        if current.ref == validator.ref:
            return account
        raise ValidatorAlreadyInstalled(account.address, current.ref)

    logger.info(f"Installed session validator {validator.ref} on {account.address}")
    return replace(account, regular_validator=validator)


def uninstall_validator(account: Account, validator_ref: str) -> Account:
    """
    Remove a regular validator by reference.

    Safe to call when the validator is already absent: the account is
    returned unchanged.
    """
    if account.sudo_validator.ref.lower() == validator_ref.lower():
        raise ConfigurationError("The sudo validator cannot be uninstalled")

    current = account.regular_validator
    if current is None or current.ref.lower() != validator_ref.lower():
        logger.debug(f"Validator {validator_ref} not installed on {account.address}; nothing to do")
        return account

    logger.info(f"Uninstalled session validator {validator_ref} from {account.address}")
    return replace(account, regular_validator=None)
