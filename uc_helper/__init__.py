"""
Underdogs Cup helper package.

Links Discord users to TETR.IO accounts and keeps their TETRA LEAGUE stats
for the tournament bot.
"""

__version__ = "0.2.0"
