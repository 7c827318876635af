"""
CBT test session engine.
"""
