"""
Thin async wrapper around the Solana JSON-RPC client.

Each call opens its own ``AsyncClient`` connection. Responses are reduced
to the small dataclasses below so the rest of the service never handles
solders response types, and every RPC/transport failure is re-raised as
``LedgerUnavailable``.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from solapay.config import get_commitment, get_rpc_url
from solapay.exceptions import LedgerUnavailable

logger = logging.getLogger(__name__)

RPC_ERRORS = (SolanaRpcException, RPCException, httpx.HTTPError)


@dataclass(frozen=True)
class Blockhash:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(frozen=True)
class SignatureStatus:
    confirmation_status: Optional[str]  # processed | confirmed | finalized
    err: Optional[str] = None


@dataclass(frozen=True)
class TokenBalance:
    account_index: int
    mint: str
    owner: Optional[str]
    amount: int  # base units
    decimals: int


@dataclass
class LedgerTransaction:
    signature: str
    slot: int
    err: Optional[str]
    account_keys: List[str] = field(default_factory=list)
    pre_token_balances: List[TokenBalance] = field(default_factory=list)
    post_token_balances: List[TokenBalance] = field(default_factory=list)

    @property
    def fee_payer(self) -> Optional[str]:
        return self.account_keys[0] if self.account_keys else None


def _confirmation_label(status) -> Optional[str]:
    if status is None:
        return None
    if status == TransactionConfirmationStatus.Finalized:
        return "finalized"
    if status == TransactionConfirmationStatus.Confirmed:
        return "confirmed"
    if status == TransactionConfirmationStatus.Processed:
        return "processed"
    return None


def _token_balances(balances) -> List[TokenBalance]:
    return [
        TokenBalance(
            account_index=balance.account_index,
            mint=str(balance.mint),
            owner=str(balance.owner) if balance.owner is not None else None,
            amount=int(balance.ui_token_amount.amount),
            decimals=balance.ui_token_amount.decimals,
        )
        for balance in balances or []
    ]


def _account_key(key) -> str:
    # jsonParsed messages carry ParsedAccount objects, raw ones carry Pubkeys
    return str(getattr(key, "pubkey", key))


async def get_latest_blockhash() -> Blockhash:
    try:
        async with AsyncClient(get_rpc_url()) as client:
            response = await client.get_latest_blockhash(commitment=get_commitment())
    except RPC_ERRORS as exc:
        raise LedgerUnavailable(f"Could not fetch latest blockhash: {exc}") from exc
    return Blockhash(
        blockhash=response.value.blockhash,
        last_valid_block_height=response.value.last_valid_block_height,
    )


async def account_exists(address: Pubkey) -> bool:
    try:
        async with AsyncClient(get_rpc_url()) as client:
            response = await client.get_account_info(address, commitment=get_commitment())
    except RPC_ERRORS as exc:
        raise LedgerUnavailable(f"Could not fetch account {address}: {exc}") from exc
    return response.value is not None


async def get_token_balance(address: Pubkey) -> int:
    """Balance of a token account in base units."""
    try:
        async with AsyncClient(get_rpc_url()) as client:
            response = await client.get_token_account_balance(address, commitment=get_commitment())
    except RPC_ERRORS as exc:
        raise LedgerUnavailable(f"Could not fetch token balance for {address}: {exc}") from exc
    return int(response.value.amount)


async def get_signature_status(signature: str) -> Optional[SignatureStatus]:
    try:
        async with AsyncClient(get_rpc_url()) as client:
            response = await client.get_signature_statuses([Signature.from_string(signature)])
    except RPC_ERRORS as exc:
        raise LedgerUnavailable(f"Could not fetch status for {signature}: {exc}") from exc

    status = response.value[0] if response.value else None
    if status is None:
        return None
    return SignatureStatus(
        confirmation_status=_confirmation_label(status.confirmation_status),
        err=str(status.err) if status.err is not None else None,
    )


async def get_transaction(signature: str) -> Optional[LedgerTransaction]:
    try:
        async with AsyncClient(get_rpc_url()) as client:
            response = await client.get_transaction(
                Signature.from_string(signature),
                encoding="jsonParsed",
                commitment=get_commitment(),
                max_supported_transaction_version=0,
            )
    except RPC_ERRORS as exc:
        raise LedgerUnavailable(f"Could not fetch transaction {signature}: {exc}") from exc

    if response.value is None:
        return None

    encoded = response.value.transaction
    meta = encoded.meta
    if meta is None:
        logger.warning("Transaction %s returned without status metadata", signature)
        return None

    return LedgerTransaction(
        signature=signature,
        slot=response.value.slot,
        err=str(meta.err) if meta.err is not None else None,
        account_keys=[_account_key(key) for key in encoded.transaction.message.account_keys],
        pre_token_balances=_token_balances(meta.pre_token_balances),
        post_token_balances=_token_balances(meta.post_token_balances),
    )
