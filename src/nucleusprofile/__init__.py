"""nucleusprofile: landmark detection, segmentation and aggregate profiling of nuclear outlines."""

__version__ = "0.1.0"
