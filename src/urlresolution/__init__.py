"""
URL resolution join.
Replaces the raw URL of every hit register with its canonical URL,
using a sort-merge cogroup or a broadcast hash join.
"""

__version__ = "0.1.0"
