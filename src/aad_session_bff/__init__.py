"""Azure AD session BFF: OAuth2 authorization-code login, server-side token
sessions with transparent renewal, and a bearer-injecting API proxy."""

__version__ = "0.1.0"
