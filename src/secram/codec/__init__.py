"""
Bit-level codecs for position records.
"""
