from .sandbox import Sandbox, SandboxCreate, SandboxRead, SandboxStatus

__all__ = ["Sandbox", "SandboxCreate", "SandboxRead", "SandboxStatus"]
