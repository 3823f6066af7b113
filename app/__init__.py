"""
QnA Bot - Core Application Package

This package contains the core functionality for the QnA bot including:
- Configuration management
- Knowledge base loading and validation
- Question scoring and ranked matching
- Multi-turn follow-up prompt navigation
- Conversation state storage
- API endpoints
"""

__version__ = "1.0.0"
