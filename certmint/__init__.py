# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""CertMint: production certification and claim-mint workflow service."""

__version__ = "0.1.0"
