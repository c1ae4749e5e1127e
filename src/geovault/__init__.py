"""
GeoVault: encrypted spatiotemporal query engine.

Points are stored as ciphertexts and queried in two stages:
1. Coarse Stage: grid index prunes candidates by cell
2. Fine Stage: homomorphic evaluation of range and nearest-neighbor predicates

Plaintext results exist only after a decryption oracle returns a
verified proof, and each query can be revealed exactly once.
"""

__version__ = "0.1.0"
