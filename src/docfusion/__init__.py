"""DocFusion - hybrid keyword and semantic search for Markdown documents."""

__version__ = "0.1.0"
