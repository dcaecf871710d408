"""Client for the content-addressed artifact store (IPFS HTTP RPC API)."""

import json
import logging
from typing import Any, Optional, Tuple

import httpx

from .errors import ArtifactUnavailable, MalformedProof
from .models import Proof

logger = logging.getLogger(__name__)

PROOF_FIELDS = ("a", "b", "c", "input")


class ArtifactStoreClient:
    """Fetch payloads from an IPFS node by content address."""

    def __init__(self, base_url: str = "http://127.0.0.1:5001", timeout: float = 30.0):
        """Initialize the client.

        Args:
            base_url: IPFS node RPC endpoint (the `/api/v0` prefix is added).
            timeout: Seconds to wait for a `cat` to complete.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch(self, content_address: str) -> bytes:
        """Return the raw bytes stored under content_address."""
        if not content_address:
            raise ArtifactUnavailable("no content address given")

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    f"{self.base_url}/api/v0/cat",
                    params={"arg": content_address},
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"IPFS cat failed for {content_address}: {e}")
                raise ArtifactUnavailable(
                    f"`{content_address}` could not be resolved"
                ) from e

        return response.content

    async def fetch_proof(self, content_address: str) -> Tuple[bytes, Proof]:
        """Fetch a proof payload, returning the raw bytes and the decoded proof."""
        payload = await self.fetch(content_address)
        try:
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError) as e:
            raise ArtifactUnavailable(
                f"`{content_address}` does not contain valid JSON"
            ) from e
        return payload, decode_proof(data)


def _is_pair(value: Any) -> bool:
    return isinstance(value, list) and len(value) == 2


def decode_proof(data: Optional[dict]) -> Proof:
    """Validate a decoded proof payload.

    Requires `a` and `c` as 2-element lists, `b` as a 2x2 list and `input`
    as a list.
    """
    if not isinstance(data, dict):
        raise MalformedProof("proof payload must be a JSON object")

    missing = [name for name in PROOF_FIELDS if name not in data]
    if missing:
        raise MalformedProof(f"missing field(s): {', '.join(missing)}")

    a, b, c, public_input = (data[name] for name in PROOF_FIELDS)
    if not _is_pair(a):
        raise MalformedProof("`a` must be a list of 2 elements")
    if not (_is_pair(b) and all(_is_pair(row) for row in b)):
        raise MalformedProof("`b` must be a 2x2 list")
    if not _is_pair(c):
        raise MalformedProof("`c` must be a list of 2 elements")
    if not isinstance(public_input, list):
        raise MalformedProof("`input` must be a list")

    return Proof(a=a, b=b, c=c, input=public_input)
