"""Utility modules for batch adjustment."""

from zicombat.utils.parallel import parallel_map

__all__ = ['parallel_map']
