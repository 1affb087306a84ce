"""
zksync-multisig examples.

    **Tutorial**:
    - deploy_multisig.py: deploy a multisig through an existing AAFactory, fund
      it and send its first co-signed transaction
    - common.py: shared configuration and utilities

    **Testing and Integration**:
    - integration_test.py: the full flow against a local node, from deploying
      the factory to a confirmed co-signed transaction

Quick Start:
    Start the local-setup node, compile the contracts with hardhat-zksync, then::

        python -m examples.deploy_multisig
        ZKSYNC_INTEGRATION=1 python -m unittest examples.integration_test

Configuration:
    All examples read their endpoints and keys from environment variables; see
    examples.common.
"""
