"""Marketing Site - Company website backend with form intake and resilient email delivery."""

__version__ = "1.0.0"
__author__ = "Marketing Site Team"
__description__ = "Static site hosting, contact and brochure forms, multi-transport email fallback"

# Package metadata
__all__ = [
    "__version__",
    "__author__", 
    "__description__"
]
