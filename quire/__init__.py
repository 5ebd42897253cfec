"""
quire - multi-pass TeX rendering core

Turns a generated TeX source file into a finished PDF by driving an external
TeX engine through as many passes as the document needs.

Architecture:
- Rendering Context: backend resolution, process supervision, multi-pass
  compilation and build artifact management
- Utils: logging setup and timestamps shared across contexts
"""

__version__ = "0.1.0"
