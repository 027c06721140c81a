"""Address helpers: ZEC destination checks and deposit address derivation."""

import hashlib

import base58

from zecswap.catalog.base import Asset

# Two-byte base58check version prefixes for transparent Zcash addresses
TRANSPARENT_PREFIXES = {
    "mainnet": {
        b"\x1c\xb8": "t1",  # P2PKH
        b"\x1c\xbd": "t3",  # P2SH
    },
    "testnet": {
        b"\x1d\x25": "tm",  # P2PKH
        b"\x1c\xba": "t2",  # P2SH
    },
}

TRANSPARENT_PAYLOAD_LENGTH = 22  # version (2) + hash160 (20)


def is_transparent_zcash_address(address: str, network: str = "mainnet") -> bool:
    """Check a string is a transparent (t-addr) Zcash address for ``network``.

    Shielded addresses (zs..., u1...) are rejected: settlement only pays
    out to transparent recipients.
    """
    prefixes = TRANSPARENT_PREFIXES.get(network.lower())
    if prefixes is None:
        raise ValueError(f"Unknown Zcash network: {network}")

    if not address or len(address) != 35:
        return False

    try:
        raw = base58.b58decode_check(address)
    except ValueError:
        return False

    if len(raw) != TRANSPARENT_PAYLOAD_LENGTH:
        return False

    expected = prefixes.get(raw[:2])
    return expected is not None and address.startswith(expected)


# Chain -> simulated address prefix
_CHAIN_PREFIXES = {
    "bitcoin": "bc1q",
    "litecoin": "ltc1q",
    "dogecoin": "D",
    "ethereum": "0x",
    "xrp": "r",
    "stellar": "G",
    "cosmos": "cosmos1",
    "ton": "UQ",
}


def derive_deposit_address(seed: str, asset: Asset, index: int) -> str:
    """Derive the simulated deposit address at ``index`` for an asset.

    Deterministic in (seed, asset, index). Addresses take their chain's
    shape so they read naturally in the UI, but nothing here holds keys.
    """
    digest = hashlib.sha256(f"{seed}:{asset.chain_name}:{asset.asset_id}:{index}".encode()).digest()
    hex_digest = digest.hex()
    chain = asset.chain_name.lower()

    if chain == "solana":
        return base58.b58encode(digest).decode()
    if chain == "ethereum":
        return f"0x{hex_digest[:40]}"

    prefix = _CHAIN_PREFIXES.get(chain, "sim:")
    return f"{prefix}{hex_digest[:38]}"
