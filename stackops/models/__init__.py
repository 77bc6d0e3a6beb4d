"""Value types shared by the engines."""
