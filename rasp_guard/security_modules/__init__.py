"""
Security modules: detectors, state stores and the decision engine
"""
