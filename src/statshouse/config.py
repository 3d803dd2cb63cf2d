"""Configuration for the statshouse client."""

from __future__ import annotations

from dataclasses import dataclass, field

from .batch import HEADER_SIZE, MAX_DATAGRAM_SIZE, MAX_PAYLOAD_SIZE

DEFAULT_PORT = 13337
DEFAULT_SEND_INTERVAL_SECONDS = 0.4


@dataclass
class TransportConfig:
    """Datagram transport configuration."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT

    # Value of the environment tag injected into every record
    env: str = ""

    # False = disabled mode: writes are accepted and discarded
    enabled: bool = True

    # Soft ceiling for one datagram (stays under common path MTU)
    max_payload_size: int = MAX_PAYLOAD_SIZE

    # Pending records are sent at least this often
    send_interval_seconds: float = DEFAULT_SEND_INTERVAL_SECONDS

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError(f"port must be in 1..65535, got {self.port}")
        if not HEADER_SIZE < self.max_payload_size <= MAX_DATAGRAM_SIZE:
            raise ValueError(
                f"max_payload_size must be in {HEADER_SIZE + 1}..{MAX_DATAGRAM_SIZE}, "
                f"got {self.max_payload_size}"
            )
        if self.send_interval_seconds <= 0:
            raise ValueError(
                f"send_interval_seconds must be positive, got {self.send_interval_seconds}"
            )


@dataclass
class ClientConfig:
    """Main configuration container."""
    transport: TransportConfig = field(default_factory=TransportConfig)

    @classmethod
    def from_dict(cls, data: dict) -> ClientConfig:
        """Create config from dictionary."""
        return cls(
            transport=TransportConfig(**data.get("transport", {})),
        )

    @classmethod
    def from_yaml(cls, path: str) -> ClientConfig:
        """Load config from YAML file."""
        import yaml
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str) -> ClientConfig:
        """Load config from JSON file."""
        import json
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)
