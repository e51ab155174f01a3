"""
imagetaster - provision, test and tear down OpenStack images
"""

__version__ = "0.3.0"

from .core import ImageTaster, TasterError

__all__ = ["ImageTaster", "TasterError"]
