"""
Alternative outputs for profiling results.
"""
