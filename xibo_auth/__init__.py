"""xibo-auth - Credential management and capability gating for Xibo CMS."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("xibo-auth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "AuthSettings",
    "load_settings",
    "CredentialOrchestrator",
    "OutputHandler",
]


# Lazy imports keep `import xibo_auth` cheap for the CLI
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("AuthSettings", "load_settings"):
        from .config import AuthSettings, load_settings
        return {"AuthSettings": AuthSettings, "load_settings": load_settings}[name]
    elif name == "CredentialOrchestrator":
        from .auth.orchestrator import CredentialOrchestrator
        return CredentialOrchestrator
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
