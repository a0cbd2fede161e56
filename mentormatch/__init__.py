"""
MentorMatch
Matching and partnership workflow engine for student/supervisor projects.

Architecture:
- FastAPI routes: translate HTTP to engine calls and results back to HTTP
- Services: one per workflow component, all writes inside store transactions
- MongoDB: document store (students, supervisors, applications, projects, ...)
"""

__version__ = "1.0.0"
