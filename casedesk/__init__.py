"""
casedesk

Multi-type case workflow core with:
- Seven case kinds sharing one status state machine
- Dual-perspective (user/admin) assessments on configurable vocabularies
- Per-user notification inbox with fan-out to admins
- Best-effort external chat channel
- Stale case escalation
"""

__version__ = "0.1.0"
