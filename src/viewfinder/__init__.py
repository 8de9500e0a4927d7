"""Camera viewfinder analysis pipeline.

Live luma analysis (histogram, zebra and focus-peaking grids) plus
exposure-bracketed HDR capture with merge and tone mapping.
"""

__version__ = "0.1.0"
