"""
lmtap — formula tap and installer for the Lunch Money CLI (``lm``).
"""

__version__ = "0.1.0"
