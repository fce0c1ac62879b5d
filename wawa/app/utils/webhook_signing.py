"""Helpers for signing and verifying payment gateway webhooks."""

from __future__ import annotations

import hashlib
import hmac


def sign(secret: str, body: bytes, digestmod: str = "sha512") -> str:
    """Return the hex HMAC digest a gateway would send for ``body``.

    Parameters
    ----------
    secret:
        Shared secret used to compute the HMAC digest.
    body:
        Raw request body in bytes, exactly as received on the wire.
    digestmod:
        Name of the :mod:`hashlib` algorithm the gateway uses.
    """
    return hmac.new(secret.encode(), body, getattr(hashlib, digestmod)).hexdigest()


def verify(secret: str, body: bytes, header_sig: str, digestmod: str = "sha512") -> bool:
    """Validate a webhook signature over the raw body.

    An empty secret or header never verifies, so a misconfigured deployment
    rejects every callback instead of accepting unsigned ones.
    """
    if not secret or not header_sig:
        return False
    expected = sign(secret, body, digestmod)
    return hmac.compare_digest(expected, header_sig.strip().lower())
