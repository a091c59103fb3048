"""
Display sinks: vMix
"""

from .vmix import VMixClient, build_data_source_xml

__all__ = ["VMixClient", "build_data_source_xml"]
