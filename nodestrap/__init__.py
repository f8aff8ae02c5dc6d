"""nodestrap — bootstrap a Linux host into a container-orchestration node."""

__version__ = "0.1.0"
