"""
Reads, CIGAR operations and the per-position records built from them.
"""
