"""
Container decryption.

- xm_transform: transform state derivation and AES-CBC span decryption for .xm files
"""
