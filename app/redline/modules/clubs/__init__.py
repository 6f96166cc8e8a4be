"""
Clubs module.

Clubs, memberships, join requests, bans, invite settings, admin messages
and club analytics.
"""
