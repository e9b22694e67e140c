#!/usr/bin/env python3
"""
Generate wallet keys for the bundler.

This script generates the two accounts a bundle needs:
- Safe wallet (funds gas, receives the transferred tokens)
- Execution wallet (performs the claim and transfer calls)

Keys are written as a .env fragment ready for BundlerConfig.
"""

import argparse
import json
from pathlib import Path

from eth_account import Account


def generate_keys(output_dir: str = "./keys") -> dict:
    """
    Generate the safe and execution key pairs.

    Args:
        output_dir: Directory to save keys

    Returns:
        Dictionary with the generated addresses
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    safe = Account.create()
    execution = Account.create()

    env_path = output_path / "wallets.env"
    with open(env_path, "w") as f:
        f.write(f"BUNDLER_SAFE_WALLET_PRIVATE_KEY={safe.key.hex()}\n")
        f.write(f"BUNDLER_EXECUTION_WALLET_PRIVATE_KEY={execution.key.hex()}\n")
    env_path.chmod(0o600)

    info = {
        "env_path": str(env_path),
        "addresses": {
            "safe": safe.address,
            "execution": execution.address,
        },
    }

    info_path = output_path / "key_info.json"
    with open(info_path, "w") as f:
        json.dump(info, f, indent=2)

    return info


def main():
    parser = argparse.ArgumentParser(description="Generate safe and execution wallet keys")
    parser.add_argument(
        "--output-dir", "-o",
        default="./keys",
        help="Output directory for keys (default: ./keys)"
    )
    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing keys"
    )

    args = parser.parse_args()

    output_path = Path(args.output_dir)
    env_path = output_path / "wallets.env"

    if env_path.exists() and not args.force:
        print(f"⚠️  Keys already exist at {args.output_dir}")
        print("   Use --force to overwrite")

        info_path = output_path / "key_info.json"
        if info_path.exists():
            with open(info_path) as f:
                info = json.load(f)
            print("\n📋 Existing Key Info:")
            print(f"   Safe:      {info['addresses']['safe']}")
            print(f"   Execution: {info['addresses']['execution']}")
        return

    print("🔑 Generating new wallet keys...")
    info = generate_keys(args.output_dir)

    print("\n✅ Keys generated successfully!")
    print(f"\n📁 Keys saved to: {args.output_dir}/")
    print(f"   - wallets.env (KEEP SECRET!)")
    print(f"   - key_info.json")

    print("\n📬 Addresses:")
    print(f"   Safe:      {info['addresses']['safe']}")
    print(f"   Execution: {info['addresses']['execution']}")

    print("\n⚠️  IMPORTANT: Append wallets.env to your .env and keep it secure!")


if __name__ == "__main__":
    main()
