# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Client identification for JSON-RPC requests.

Every request made by :class:`zksync_multisig.async_client.RpcClient` carries a
header naming this package and its installed version, so node operators can
tell SDK traffic apart in their logs.

Examples:
    Build the header by hand::

        import httpx
        from zksync_multisig.metadata import Metadata

        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        response = httpx.post("http://localhost:3050", headers=headers, json=...)
"""

import importlib.metadata as metadata

# Package name constant for metadata lookup
PACKAGE_NAME = "zksync-multisig"


class Metadata:
    """Header name and value identifying this SDK in HTTP requests."""

    CLIENT_HEADER = "x-zksync-multisig-client"

    @staticmethod
    def get_client_header_val():
        """Return ``zksync-multisig/{version}``.

        Falls back to ``0.0.0`` when the package is imported from a source
        checkout that was never installed.
        """
        try:
            version = metadata.version(PACKAGE_NAME)
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        return f"zksync-multisig/{version}"
