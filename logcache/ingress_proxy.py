"""Routes incoming envelopes to the nodes responsible for their source IDs."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .messages import Envelope, SendRequest, SendResponse

Lookup = Callable[[str], List[int]]


class IngressClient(Protocol):
    def send(self, request: SendRequest) -> SendResponse: ...


class IngressReverseProxy:
    """Sends envelopes to the local node or to the remote nodes that own them."""

    def __init__(
        self,
        lookup: Lookup,
        clients: Sequence[IngressClient],
        local_idx: int,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._lookup = lookup
        self._clients = list(clients)
        self._local_idx = local_idx
        self._log = logger or logging.getLogger(__name__)

    def send(self, request: SendRequest) -> SendResponse:
        """Forward ``request``; failures of individual nodes are logged, not raised."""
        if request.local_only:
            return self._clients[self._local_idx].send(request)

        by_node: Dict[int, List[Envelope]] = {}
        for envelope in request.envelopes:
            for idx in self._lookup(envelope.source_id):
                by_node.setdefault(idx, []).append(envelope)

        for idx, envelopes in by_node.items():
            try:
                self._clients[idx].send(
                    SendRequest(envelopes=envelopes, local_only=True)
                )
            except Exception as exc:  # noqa: BLE001 - one node must not fail the rest
                self._log.warning(
                    "ingress reverse proxy: failed to write to client: %s", exc
                )

        return SendResponse()