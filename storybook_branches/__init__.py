"""Build and serve one Storybook per branch of a git repository."""

__version__ = "1.0.0"
