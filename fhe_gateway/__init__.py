"""
FHE Gateway - Boundary to the encryption / decryption oracle service.

Consumers depend on the EncryptionGateway protocol; LocalOracle is the
in-process implementation used for development, tests and the CLI.
"""

from fhe_gateway.gateway import DecryptionResult, EncryptionGateway, InputProofVerifier
from fhe_gateway.oracle import LocalOracle

__all__ = [
    "DecryptionResult",
    "EncryptionGateway",
    "InputProofVerifier",
    "LocalOracle",
]
