"""Helpers shared by the update, restore and destroy engines."""
