"""Octoshift

Resilient API clients for migrating repositories between Azure DevOps,
Bitbucket Server and GitHub.
"""

__version__ = '0.1.0'

from .cli.main import main

__all__ = ['main']
