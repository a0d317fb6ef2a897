"""k2p: capture a book shown in the Kindle desktop reader and assemble it into a PDF."""

__version__ = "0.1.0"
