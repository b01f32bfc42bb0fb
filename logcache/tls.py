"""TLS credential paths."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TLS:
    """Paths to a CA certificate, a certificate and its private key."""

    ca_path: str = ""
    cert_path: str = ""
    key_path: str = ""

    def has_any_credential(self) -> bool:
        """Tell whether any of the three paths is set."""
        return bool(self.ca_path or self.cert_path or self.key_path)