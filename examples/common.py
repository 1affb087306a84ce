# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Common configuration and utilities for the zksync-multisig examples.

Environment Variables:
    ZKSYNC_NODE_URL: JSON-RPC endpoint of the zkSync node
    ZKSYNC_RICH_WALLET_PK: Private key of a funded wallet that pays for deployments
    ZKSYNC_AA_FACTORY_ADDRESS: Address of an already deployed AAFactory
    ZKSYNC_ARTIFACTS_PATH: hardhat-zksync artifacts directory

The defaults target the local-setup docker environment, whose node listens on
port 3050 and whose genesis funds a set of well-known rich wallets.
"""

import os
import os.path

# zkSync JSON-RPC endpoint, the local-setup node by default
NODE_URL = os.getenv("ZKSYNC_NODE_URL", "http://localhost:3050")

# First rich wallet of the local-setup environment; never use it on a public network
RICH_WALLET_PK = os.getenv(
    "ZKSYNC_RICH_WALLET_PK",
    "0x3eb15da85647edd9a1159a4a13b9e7c56877c4eb33f614546d4db06a51868b1c",
)

# Factory used by deploy_multisig when no other address is given
AA_FACTORY_ADDRESS = os.getenv(
    "ZKSYNC_AA_FACTORY_ADDRESS", "0xa0eD7885B408961430F89d797cD1cc87530D8fBe"
)

# Compiled contracts, as written by `yarn hardhat compile`
ARTIFACTS_PATH = os.getenv(
    "ZKSYNC_ARTIFACTS_PATH",
    os.path.abspath("./artifacts-zk"),
)


def log_cyan(message: str):
    print(f"\x1b[36m          > {message}\x1b[0m")
