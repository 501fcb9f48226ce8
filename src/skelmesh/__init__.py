"""skelmesh: consolidate face-varying scene data into skinned, animated render buffers."""

__version__ = "0.1.0"
