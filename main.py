#!/usr/bin/env python3

import argparse
import asyncio
import logging
import sys
from localnet_relay.relayer import LocalnetRelayer

# Set up root logger
logger = logging.getLogger(__name__)


async def main():
    """Main entry point for the localnet relay."""
    # Parse command line arguments
    parser = argparse.ArgumentParser(description="Localnet cross-chain relay")
    parser.add_argument(
        "--exit-on-error",
        action="store_true",
        default=None,
        help="Stop on the first failed relay instead of reverting"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    args = parser.parse_args()
    logging.getLogger().setLevel(args.log_level)

    if args.exit_on_error:
        logger.info("Exit-on-error mode enabled")

    try:
        # Create relayer using factory method
        relayer = LocalnetRelayer.from_env(exit_on_error=args.exit_on_error)
        await relayer.run()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Required environment variables:")
        logger.error("  - GATEWAY_ZEVM_ADDRESS: GatewayZEVM contract on the hub (or ADDRESSES_FILE)")
        logger.error("Optional environment variables:")
        logger.error("  - ADDRESSES_FILE: Localnet address list written by the setup")
        logger.error("  - RPC_URL / HUB_RPC_URL: EVM node endpoint (default http://127.0.0.1:8545)")
        logger.error("  - ETHEREUM_GATEWAY_ADDRESS / BNB_GATEWAY_ADDRESS: Side chain gateways")
        logger.error("  - SOLANA_GATEWAY_PROGRAM, SOLANA_PAYER_SECRET: Solana gateway and fee payer")
        logger.error("  - SUI_PACKAGE_ID, SUI_SIGNER_SECRET: Sui gateway package and signer")
        logger.error("  - TON_GATEWAY_ADDRESS: TON gateway")
        logger.error("  - REGISTRY_FILE: Persisted foreign coin registry")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        if 'relayer' in locals():
            relayer.stop()
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
