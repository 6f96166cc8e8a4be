"""
Challenges module.

Pre-made and club challenges, participation, results and leaderboards.
"""
