"""
Balance Application

The sign table decides how a transaction moves its container's balance:

    container     is_expense   sign
    ACCOUNT       True         -1   (money leaves the account)
    ACCOUNT       False        +1   (money arrives)
    CREDIT_CARD   True         +1   (more is owed)
    CREDIT_CARD   False        -1   (a payment reduces what is owed)

apply_delta and reverse_delta are each ONE atomic storage increment.
Reversing exactly undoes applying for the same (amount, is_expense),
because both go through the same signed delta with opposite signs.
"""

from decimal import Decimal

from finledger.ledger.errors import ContainerNotFoundError, ValidationError
from finledger.models.ledger import ContainerKind, ContainerRef
from finledger.models.money import within_money_range
from finledger.services.storage.interface import LedgerSession

BALANCE_SIGNS: dict[tuple[ContainerKind, bool], int] = {
    (ContainerKind.ACCOUNT, True): -1,
    (ContainerKind.ACCOUNT, False): 1,
    (ContainerKind.CREDIT_CARD, True): 1,
    (ContainerKind.CREDIT_CARD, False): -1,
}


def balance_sign(kind: ContainerKind, is_expense: bool) -> int:
    return BALANCE_SIGNS[(kind, bool(is_expense))]


def signed_delta(kind: ContainerKind, amount: Decimal, is_expense: bool) -> Decimal:
    """The change a transaction makes to its container's stored balance."""
    return amount * balance_sign(kind, is_expense)


async def _increment(session: LedgerSession, ref: ContainerRef, delta: Decimal) -> Decimal:
    new_balance = await session.increment_balance(ref, delta)
    if new_balance is None:
        raise ContainerNotFoundError(ref)
    # Raising here rolls the unit of work back before the out-of-range sum commits
    if not within_money_range(new_balance):
        raise ValidationError.for_field(
            "amount",
            "out_of_range",
            f"Amount would take the {ref.kind.value.replace('_', ' ')} balance "
            f"out of range ({new_balance})",
        )
    return new_balance


async def apply_delta(
    session: LedgerSession,
    ref: ContainerRef,
    amount: Decimal,
    is_expense: bool,
) -> Decimal:
    """
    Apply a transaction's effect to its container.

    Returns:
        The container's new balance

    Raises:
        ContainerNotFoundError: If the container is missing or soft-deleted
        ValidationError: If the new balance would exceed the money range
    """
    return await _increment(session, ref, signed_delta(ref.kind, amount, is_expense))


async def reverse_delta(
    session: LedgerSession,
    ref: ContainerRef,
    amount: Decimal,
    is_expense: bool,
) -> Decimal:
    """
    Undo apply_delta for the same (amount, is_expense).

    Raises:
        ContainerNotFoundError: If the container is missing or soft-deleted
        ValidationError: If the new balance would exceed the money range
    """
    return await _increment(session, ref, -signed_delta(ref.kind, amount, is_expense))
