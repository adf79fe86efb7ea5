from .sandbox import SandboxRepository

__all__ = ["SandboxRepository"]
