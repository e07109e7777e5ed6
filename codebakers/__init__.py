"""
CodeBakers - agent library, lesson capture and project scoring toolkit.

Keeps markdown agent documents, the lessons folded into them, and the
scores.json project health file in one workspace.
"""

__version__ = "1.0.0"
