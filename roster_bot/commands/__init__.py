"""Slash commands exposing the team registry on Discord.

``replies`` builds the response texts and has no ``discord`` dependency;
``register`` and ``utils`` need ``discord.py`` installed.
"""
