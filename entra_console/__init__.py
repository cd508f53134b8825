"""Interactive administration console for Microsoft Entra ID users, licenses and sign-in methods."""

__version__ = "0.1.0"
