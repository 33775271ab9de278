"""
Explain Engage.

Engagement and adaptation core for a conversational explanation service.
"""
