"""
ForgeLoop command line interface
"""
