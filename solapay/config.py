import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

from solapay.exceptions import ConfigurationMissing

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

USDC_DECIMALS = 6

CLUSTER_URLS = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
}

# Circle USDC mints
USDC_MINTS = {
    "mainnet-beta": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "devnet": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
    "testnet": "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU",
}

COMMITMENTS = ("confirmed", "finalized")


@dataclass(frozen=True)
class ConfirmationPolicy:
    max_attempts: int
    interval: float


def get_network() -> str:
    return os.getenv("SOLANA_NETWORK", "devnet").strip()


def get_rpc_url() -> str:
    url = os.getenv("SOLANA_RPC_URL")
    if url:
        return url
    network = get_network()
    if network not in CLUSTER_URLS:
        raise ConfigurationMissing(f"No RPC URL configured for network '{network}'")
    return CLUSTER_URLS[network]


def get_usdc_mint() -> str:
    mint = os.getenv("USDC_MINT_ADDRESS")
    if mint:
        return mint.strip()
    network = get_network()
    if network not in USDC_MINTS:
        raise ConfigurationMissing(f"USDC_MINT_ADDRESS is not set for network '{network}'")
    return USDC_MINTS[network]


def get_platform_wallet() -> str:
    wallet = os.getenv("PLATFORM_WALLET_ADDRESS", "").strip()
    if not wallet:
        raise ConfigurationMissing("PLATFORM_WALLET_ADDRESS is not set")
    return wallet


def get_commitment() -> str:
    commitment = os.getenv("SOLANA_COMMITMENT", "confirmed").strip().lower()
    if commitment not in COMMITMENTS:
        raise ConfigurationMissing(f"Unsupported SOLANA_COMMITMENT '{commitment}'")
    return commitment


def get_confirmation_policy() -> ConfirmationPolicy:
    return ConfirmationPolicy(
        max_attempts=int(os.getenv("CONFIRMATION_MAX_ATTEMPTS", "30")),
        interval=float(os.getenv("CONFIRMATION_RETRY_DELAY", "2.0")),
    )


def get_amount_tolerance() -> Decimal:
    raw = os.getenv("PAYMENT_AMOUNT_TOLERANCE", "0.000001")
    try:
        tolerance = Decimal(raw)
    except InvalidOperation:
        raise ConfigurationMissing(f"PAYMENT_AMOUNT_TOLERANCE is not a number: {raw!r}")
    if tolerance < 0:
        raise ConfigurationMissing("PAYMENT_AMOUNT_TOLERANCE must not be negative")
    return tolerance


def get_base_url() -> str:
    return os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")
