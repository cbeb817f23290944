"""
Webhook signature verification for shared-secret providers.

The gateway signs nothing itself; providers (or the relay in front of them)
send ``X-Isa-Signature: <hex HMAC-SHA256 of the raw body>``. Comparison is
constant-time. PayPal does not use this path; its adapter calls PayPal's
own verification API instead.
"""

import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Optional, Union

logger = logging.getLogger("isapay.signatures")

SIGNATURE_HEADER = "x-isa-signature"


def hmac_sha256_hex(secret: str, payload: Union[bytes, str]) -> str:
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_hmac_signature(
    provider: str,
    secret: Optional[str],
    headers: Mapping[str, str],
    body: bytes,
    require_secret: bool = True,
) -> bool:
    """
    Check the HMAC signature header against the provider's shared secret.

    When no secret is configured the result depends on ``require_secret``:
    fail closed (False) by default, or trust the payload when the operator
    has explicitly opted out.
    """
    if not secret:
        if require_secret:
            logger.error(
                "Rejecting %s webhook: no webhook secret configured "
                "(set webhook_require_signature=false to accept unsigned callbacks)",
                provider,
            )
            return False
        logger.warning("Accepting unsigned %s webhook: signature checks disabled", provider)
        return True

    signature = (headers.get(SIGNATURE_HEADER) or "").strip().lower()
    if not signature:
        logger.warning("Rejecting %s webhook: missing %s header", provider, SIGNATURE_HEADER)
        return False

    expected = hmac_sha256_hex(secret, body)
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "surrogateescape")):
        logger.warning("Rejecting %s webhook: signature mismatch", provider)
        return False
    return True
