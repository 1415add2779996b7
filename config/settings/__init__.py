"""
Settings loader for the Page Watcher service.

DJANGO_ENV selects production, test or development (the default).
"""

import os

env = os.getenv("DJANGO_ENV", "development")

if env == "production":
    from .production import *
elif env == "test":
    from .test import *
else:
    from .development import *
