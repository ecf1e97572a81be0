"""
Order-preserving encryption of absolute positions.
"""
