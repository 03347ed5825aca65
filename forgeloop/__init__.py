"""
ForgeLoop - tag-protocol change application with a bounded auto-fix loop
"""

__version__ = "1.0.0"
