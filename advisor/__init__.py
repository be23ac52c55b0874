"""
Coverage Advisor - conversational routing and review pipeline
"""
__version__ = "1.0.0"
