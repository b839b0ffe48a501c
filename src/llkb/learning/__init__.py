"""Learning subsystem: store, similarity, confidence, history, analytics.

The LearningAPI in llkb.learning.api is the entry point for callers; the
other modules are its building blocks and can be used on their own.
"""
