import hashlib

from solders.keypair import Keypair
from solders.pubkey import Pubkey


def reference_for_payment(external_id: str) -> Pubkey:
    """Derive the Solana Pay reference key for a payment.

    The SHA-256 digest of the payment id seeds an ed25519 keypair, so the
    same id always maps to the same on-curve public key. The private half
    is discarded; the key only tags transactions.
    """
    seed = hashlib.sha256(external_id.encode("utf-8")).digest()
    return Keypair.from_seed(seed).pubkey()
