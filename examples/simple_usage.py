#!/usr/bin/env python3
"""
Simple example of using the CrossPay SDK.
"""
import asyncio
import os

from crosspay_sdk import (
    CrossPayError,
    LocalSigner,
    PaymentClient,
    ProtocolTimeoutError,
    Settings,
    TransferIntent,
)

SEPOLIA_USDC = "0x1c7d4b196cb0c7b01d743fbc6116a902379c7238"
FUJI_USDC = "0x5425890298aed601595a70ab815c96711a31bc65"


def print_step(entry, state):
    print(f"{entry} ({state.phase.value})")


async def main():
    """
    Demonstrate basic usage of the PaymentClient.

    This example shows how to:
    1. Initialize the client from the environment
    2. Route a USDC payment from Sepolia to Avalanche Fuji
    3. Follow its progress until the mint is confirmed
    """
    # Read configuration from environment
    PRIVATE_KEY = os.environ.get("PRIVATE_KEY")
    RECIPIENT = os.environ.get("RECIPIENT")

    # Verify configuration
    if not PRIVATE_KEY:
        print("ERROR: PRIVATE_KEY environment variable is required")
        return

    signer = LocalSigner(PRIVATE_KEY)
    client = PaymentClient(signer=signer, settings=Settings.from_env())

    intent = TransferIntent(
        source_chain_id=11155111,
        destination_chain_id=43113,
        source_token=SEPOLIA_USDC,
        destination_token=FUJI_USDC,
        amount=1_000_000,  # 1 USDC
        recipient=RECIPIENT or signer.address,
    )

    try:
        balance = await client.get_balance(intent.source_chain_id, signer.address)
        print(f"Sepolia USDC balance: {balance}")

        decision = await client.quote(intent)
        print(f"Route: {decision.protocol.value}, estimated fee: {decision.estimated_fee}")

        state = await client.pay(intent, observer=print_step, quote=False)
        print(f"Finished in phase {state.phase.value}")

    except ProtocolTimeoutError as e:
        print(f"Still in flight, check again later: {e}")
    except CrossPayError as e:
        print(f"Payment failed [{e.error_code.value}]: {e}")
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main())
