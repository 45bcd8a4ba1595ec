"""ipwatcher - watch the public IP address and e-mail on change."""

__version__ = "0.2.0"
