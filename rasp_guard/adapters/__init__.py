"""
Web framework adapters
"""
