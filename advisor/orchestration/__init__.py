"""
Orchestration: conversation types, journey reconstruction, markers and the
review pipeline.
"""
