#!/usr/bin/env python3
"""
Check balances of the safe and execution wallets.
"""

import asyncio
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bundler.config import BundlerConfig
from bundler.node.http import HttpRpcAdapter
from bundler.tx.signer import SigningKeyError, load_identities

WEI_PER_ETHER = 10**18


async def check_balance(rpc_url: str = None):
    """Print balances and nonces of both wallets."""
    config = BundlerConfig(rpc_url=rpc_url) if rpc_url else BundlerConfig()

    try:
        safe, execution = load_identities(config)
    except SigningKeyError as e:
        print(f"❌ Error: {e}")
        print("   Run: python scripts/generate_keys.py first")
        return None

    node = HttpRpcAdapter(config)
    await node.connect()

    try:
        head = await node.get_block_number()
        header = await node.get_block(head)
        print(f"\n⛓️  Block {head}, base fee {header.base_fee_per_gas} wei")

        balances = {}
        for identity in (safe, execution):
            balance = await node.get_balance(identity.address)
            nonce = await node.get_transaction_count(identity.address)
            balances[identity.label] = balance

            print(f"\n📬 {identity.label.title()} wallet: {identity.address}")
            print(f"   Balance: {balance / WEI_PER_ETHER:.6f} ETH ({balance:,} wei)")
            print(f"   Nonce:   {nonce}")

        if balances["safe"] == 0:
            print("\n❌ Safe wallet is empty; it cannot fund the execution wallet's gas.")
        else:
            print("\n✅ Safe wallet can fund bundles.")

        return balances

    finally:
        await node.disconnect()


def main():
    parser = argparse.ArgumentParser(description="Check bundler wallet balances")
    parser.add_argument(
        "--rpc-url", "-r",
        help="Chain JSON-RPC endpoint (default: from BUNDLER_RPC_URL)"
    )

    args = parser.parse_args()
    asyncio.run(check_balance(args.rpc_url))


if __name__ == "__main__":
    main()
