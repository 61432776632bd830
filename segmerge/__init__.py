"""Browse recorded video segments and merge them losslessly with ffmpeg."""

__version__ = "0.1.0"
