"""Static blockchain -> expand.network routing tables."""

from __future__ import annotations

from trading.errors import ConfigurationGap
from trading.models import ChainRoute

CHAIN_IDS: dict[str, str] = {
    "Ethereum": "1",
    "Binance Smart Chain": "56",
    "Polygon": "137",
    "Avalanche": "43114",
    "Arbitrum": "42161",
    "Fantom": "250",
}

DEX_IDS: dict[str, str] = {
    "Ethereum": "1300",
    "Binance Smart Chain": "1200",
    "Avalanche": "1305",
    "Polygon": "1307",
    "Arbitrum": "1308",
    "Base": "1309",
    "Solana": "2700",
}

# USDT per chain; positions are valued against it.
QUOTE_ASSETS: dict[str, str] = {
    "Ethereum": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
    "Solana": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    "Polygon": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
}


def _lookup(table: dict[str, str], blockchain: str) -> str:
    if blockchain in table:
        return table[blockchain]
    folded = blockchain.strip().casefold()
    for name, value in table.items():
        if name.casefold() == folded:
            return value
    return ""


def resolve_route(blockchain: str) -> ChainRoute:
    name = str(blockchain or "").strip()
    chain_id = _lookup(CHAIN_IDS, name)
    dex_id = _lookup(DEX_IDS, name)
    quote_asset = _lookup(QUOTE_ASSETS, name)
    missing = [
        label
        for label, value in (("chain_id", chain_id), ("dex_id", dex_id), ("quote_asset", quote_asset))
        if not value
    ]
    if missing:
        raise ConfigurationGap(f"no routing for blockchain={name or '<empty>'} missing={','.join(missing)}")
    return ChainRoute(blockchain=name, chain_id=chain_id, dex_id=dex_id, quote_asset_address=quote_asset)


def supported_blockchains() -> list[str]:
    return sorted(name for name in CHAIN_IDS if name in DEX_IDS and name in QUOTE_ASSETS)
