"""Log cache building blocks: envelope types, query helpers, routing, proxies and syslog ingress."""

__version__ = "0.1.0"