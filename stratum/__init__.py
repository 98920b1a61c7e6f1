"""Stratum: atomic, image-based OS deployments on btrfs.

Core design goals:
- Verified bundles only (digest checked before every unpack)
- A deployment is fully present or fully absent
- Sealed read-only root with writable etc and shared var
- One-shot boot of new deployments
- Bounded retention for rollback
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
