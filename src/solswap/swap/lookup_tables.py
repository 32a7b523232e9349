"""Address lookup table resolution.

Swap routes routinely reference more accounts than fit in a 1232-byte
transaction, so the aggregator points at on-chain lookup tables that let
the message refer to accounts by a one-byte index. Tables are fetched per
swap attempt and never cached.
"""

import asyncio
import logging
from typing import Optional

from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.pubkey import Pubkey

from solswap.errors import SwapError
from solswap.rpc.client import AccountInfo, SolanaRpcClient

logger = logging.getLogger(__name__)

ADDRESS_LOOKUP_TABLE_PROGRAM_ID = Pubkey.from_string("AddressLookupTab1e1111111111111111111111111")


def parse_lookup_table(key: Pubkey, account: AccountInfo) -> AddressLookupTableAccount:
    """Decode a lookup table account.

    Raises:
        ValueError: Account is not an initialized lookup table
    """
    if account.owner != ADDRESS_LOOKUP_TABLE_PROGRAM_ID:
        raise ValueError(f"owned by {account.owner}, not the lookup table program")
    table = AddressLookupTable.deserialize(account.data)
    return AddressLookupTableAccount(key=key, addresses=list(table.addresses))


async def _fetch_one(rpc: SolanaRpcClient, address: Pubkey) -> Optional[AddressLookupTableAccount]:
    try:
        account = await rpc.get_account_info(address)
    except SwapError as e:
        logger.warning(f"Dropping lookup table {address}: fetch failed ({e})")
        return None

    if account is None:
        logger.warning(f"Dropping lookup table {address}: account not found")
        return None
    try:
        return parse_lookup_table(address, account)
    except ValueError as e:
        logger.warning(f"Dropping lookup table {address}: {e}")
        return None


async def resolve_lookup_tables(
    rpc: SolanaRpcClient,
    addresses: list[Pubkey],
) -> list[AddressLookupTableAccount]:
    """Fetch every lookup table concurrently.

    A table that cannot be fetched or decoded is logged and left out; the
    composer then either fits without it or reports TransactionTooLarge.

    Args:
        rpc: RPC client
        addresses: Lookup table addresses from the instruction set

    Returns:
        Resolved tables, in request order, misses removed
    """
    unique = list(dict.fromkeys(addresses))
    results = await asyncio.gather(*(_fetch_one(rpc, address) for address in unique))
    tables = [table for table in results if table is not None]
    logger.debug(f"Resolved {len(tables)}/{len(unique)} lookup tables")
    return tables
