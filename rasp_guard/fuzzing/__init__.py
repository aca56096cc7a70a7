"""
Offline payload fuzzing
"""
