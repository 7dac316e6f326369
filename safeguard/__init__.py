"""
Safeguard - content moderation decision pipeline.

Entry point: safeguard.moderation.service.ModerationService
"""
__version__ = "1.0.0"
