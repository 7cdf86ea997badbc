"""Guardian API.

Backend for a Destiny 2 companion site. Users sign in with their Bungie.net
account; the service keeps their Bungie credential server-side and proxies
authenticated Bungie Platform calls on their behalf.
"""

__version__ = "0.1.0"
