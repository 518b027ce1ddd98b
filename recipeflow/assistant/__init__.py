"""Conversational drafting of recipes."""
