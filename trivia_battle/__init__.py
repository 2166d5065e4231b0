"""
Trivia Battle Bot: group trivia battles and 1-on-1 challenges for Discord.
"""
__version__ = "1.0.0"
