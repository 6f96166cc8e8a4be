"""
Club events module.

Events and attendance (RSVP) tracking.
"""
