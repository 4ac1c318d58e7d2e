import enum
import logging
from asyncio import sleep

from solapay.config import get_commitment, get_confirmation_policy
from solapay.exceptions import LedgerUnavailable
from solapay.solana_service import get_signature_status

logger = logging.getLogger(__name__)


class ConfirmationState(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


def _reached(confirmation_status, commitment: str) -> bool:
    if commitment == "finalized":
        return confirmation_status == "finalized"
    return confirmation_status in ("confirmed", "finalized")


async def poll_confirmation(signature: str, max_attempts=None, interval=None) -> ConfirmationState:
    """Poll the signature status until it is confirmed, fails, or the budget runs out.

    An execution error is final on the first sighting. Unseen or processed
    signatures and RPC errors each cost one attempt.
    """
    policy = get_confirmation_policy()
    max_attempts = policy.max_attempts if max_attempts is None else max_attempts
    interval = policy.interval if interval is None else interval
    commitment = get_commitment()

    state = ConfirmationState.PENDING
    attempt = 0
    while state is ConfirmationState.PENDING:
        if attempt >= max_attempts:
            state = ConfirmationState.EXHAUSTED
            break
        attempt += 1

        try:
            status = await get_signature_status(signature)
        except LedgerUnavailable as exc:
            logger.warning("Confirmation check %d/%d for %s failed: %s", attempt, max_attempts, signature, exc)
            status = None

        if status is not None and status.err is not None:
            logger.error("Transaction %s failed on-chain: %s", signature, status.err)
            state = ConfirmationState.FAILED
        elif status is not None and _reached(status.confirmation_status, commitment):
            state = ConfirmationState.CONFIRMED
        elif attempt < max_attempts:
            await sleep(interval)

    if state is ConfirmationState.EXHAUSTED:
        logger.warning("Transaction %s not confirmed after %d attempts", signature, max_attempts)
    return state


async def await_confirmation(signature: str, max_attempts=None, interval=None) -> bool:
    state = await poll_confirmation(signature, max_attempts=max_attempts, interval=interval)
    return state is ConfirmationState.CONFIRMED
